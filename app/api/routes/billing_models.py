from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SubscriptionCreateRequest(CamelModel):
    creator_id: UUID = Field(alias="creatorId")
    tier_id: str | None = Field(default=None, alias="tierId", max_length=64)
    billing_period: Literal["monthly", "3_month", "yearly"] = Field(
        default="monthly",
        alias="billingPeriod",
    )
    subscription_type: Literal["content", "chat", "bundle"] = Field(
        default="content",
        alias="subscriptionType",
    )


class CheckoutResponse(CamelModel):
    payment_required: bool = Field(default=True, alias="paymentRequired")
    checkout_url: str = Field(alias="checkoutUrl")
    session_id: str = Field(alias="sessionId")
    amount_minor: int = Field(alias="amountMinor", ge=0)
    currency: str


class SubscriptionSummaryResponse(CamelModel):
    id: UUID
    creator_id: UUID = Field(alias="creatorId")
    creator_name: str | None = Field(alias="creatorName")
    subscription_type: str = Field(alias="subscriptionType")
    billing_period: str = Field(alias="billingPeriod")
    status: str
    tier_id: UUID | None = Field(alias="tierId")
    tier_name: str | None = Field(alias="tierName")
    price_paid: Decimal = Field(alias="pricePaid")
    currency: str
    current_period_end: datetime = Field(alias="currentPeriodEnd")
    cancelled_at: datetime | None = Field(alias="cancelledAt")


class SubscriptionListResponse(CamelModel):
    subscriptions: list[SubscriptionSummaryResponse]


class SubscriptionCancelResponse(CamelModel):
    subscription_id: UUID = Field(alias="subscriptionId")
    status: str
    idempotent_replay: bool = Field(alias="idempotentReplay")


class TipCheckoutRequest(CamelModel):
    creator_id: UUID = Field(alias="creatorId")
    amount_minor: int = Field(alias="amountMinor", gt=0)
    message: str | None = Field(default=None, max_length=500)


class TokenCheckoutRequest(CamelModel):
    pack_code: str = Field(alias="packCode", min_length=1, max_length=32)


class UnlockOptionResponse(CamelModel):
    kind: str
    label: str
    recommended: bool
    messages: int | None = None
    token_cost: int | None = Field(default=None, alias="tokenCost")
    cost_display: str | None = Field(default=None, alias="costDisplay")
    affordable: bool | None = None


class EntitlementResponse(CamelModel):
    has_access: bool = Field(alias="hasAccess")
    access_type: str = Field(alias="accessType")
    can_send_message: bool = Field(alias="canSendMessage")
    messages_remaining: int | None = Field(alias="messagesRemaining")
    requires_unlock: bool = Field(alias="requiresUnlock")
    unlock_options: list[UnlockOptionResponse] = Field(alias="unlockOptions")
    is_low_messages: bool = Field(alias="isLowMessages")
    warning_message: str | None = Field(alias="warningMessage")


class MessageSessionPurchaseRequest(CamelModel):
    messages: int = Field(gt=0)
    idempotency_key: str | None = Field(default=None, alias="idempotencyKey", max_length=96)


class MessageSessionResponse(CamelModel):
    session_id: UUID = Field(alias="sessionId")
    messages_remaining: int = Field(alias="messagesRemaining", ge=0)
    status: str
    token_balance: int | None = Field(default=None, alias="tokenBalance")
    idempotent_replay: bool = Field(default=False, alias="idempotentReplay")
