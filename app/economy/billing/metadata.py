from __future__ import annotations

from collections.abc import Mapping
from typing import Literal, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.economy.billing.constants import MODEL_TIER_PREFIX
from app.economy.billing.errors import InvalidEventPayloadError


class _CheckoutMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    user_id: UUID


class SubscriptionCheckoutMetadata(_CheckoutMetadata):
    type: Literal["subscription"]
    creator_id: UUID
    tier_id: str = ""
    billing_period: Literal["monthly", "3_month", "yearly"] = "monthly"
    subscription_type: Literal["content", "chat", "bundle"] = "content"

    @field_validator("tier_id")
    @classmethod
    def _validate_tier_token(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return ""
        raw_id = value[len(MODEL_TIER_PREFIX) :] if value.startswith(MODEL_TIER_PREFIX) else value
        UUID(raw_id)
        return value

    @property
    def tier_uuid(self) -> UUID | None:
        if not self.tier_id or self.tier_id.startswith(MODEL_TIER_PREFIX):
            return None
        return UUID(self.tier_id)

    @property
    def model_uuid(self) -> UUID | None:
        if not self.tier_id.startswith(MODEL_TIER_PREFIX):
            return None
        return UUID(self.tier_id[len(MODEL_TIER_PREFIX) :])


class TipCheckoutMetadata(_CheckoutMetadata):
    type: Literal["tip"]
    creator_id: UUID
    message: str | None = Field(default=None, max_length=500)


class PpvCheckoutMetadata(_CheckoutMetadata):
    type: Literal["ppv"]
    creator_id: UUID
    post_id: UUID


class TokenPurchaseMetadata(_CheckoutMetadata):
    type: Literal["token_purchase"]
    pack_code: str = Field(min_length=1, max_length=64)
    tokens: int = Field(gt=0)


MetadataT = TypeVar("MetadataT", bound=_CheckoutMetadata)


def parse_metadata(model: type[MetadataT], raw: Mapping[str, object] | None) -> MetadataT:
    try:
        return model.model_validate(dict(raw or {}))
    except ValidationError as exc:
        raise InvalidEventPayloadError(f"invalid {model.__name__}: {exc}") from exc


def build_subscription_metadata(
    *,
    user_id: UUID,
    creator_id: UUID,
    tier_token: str,
    billing_period: str,
    subscription_type: str,
) -> dict[str, str]:
    return {
        "user_id": str(user_id),
        "creator_id": str(creator_id),
        "tier_id": tier_token,
        "billing_period": billing_period,
        "type": "subscription",
        "subscription_type": subscription_type,
    }
