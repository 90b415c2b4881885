from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.models.creators import Creator
from app.db.models.users import User
from app.db.repo.creators_repo import CreatorsRepo
from app.db.repo.pricing_sources_repo import PricingSourcesRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.users_repo import UsersRepo
from app.economy.billing.catalog import get_token_pack
from app.economy.billing.conflicts import ensure_no_conflict
from app.economy.billing.constants import (
    BASE_CURRENCY,
    BILLING_PERIODS,
    LIVE_SUBSCRIPTION_STATUSES,
    MODEL_DEFAULT_PRICE_MINOR,
    MODEL_TIER_PREFIX,
    SUBSCRIPTION_TYPE_LABELS,
    SUBSCRIPTION_TYPES,
    TIP_MAX_MINOR,
    TIP_MIN_MINOR,
)
from app.economy.billing.currency import convert_minor, currency_for_country
from app.economy.billing.errors import BillingValidationError, PricingUnavailableError
from app.economy.billing.metadata import build_subscription_metadata
from app.economy.billing.pricing import quote_subscription
from app.economy.billing.types import CheckoutResult
from app.services.payment_gateway import PaymentGateway

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PriceSource:
    tier_token: str
    content_monthly_base: int | None
    period_overrides: dict[str, int | None]
    label: str


def _parse_uuid(raw: str, *, code: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError as exc:
        raise BillingValidationError(f"malformed id: {raw}", code=code) from exc


async def _resolve_price_source(
    session: AsyncSession,
    *,
    creator_id: UUID,
    tier_id: str | None,
    subscription_type: str,
) -> PriceSource:
    requested = (tier_id or "").strip()

    if requested.startswith(MODEL_TIER_PREFIX):
        model_id = _parse_uuid(requested[len(MODEL_TIER_PREFIX) :], code="E_TIER_ID_INVALID")
        model = await PricingSourcesRepo.get_model(session, model_id)
        if model is None or model.creator_id != creator_id or not model.is_active:
            raise PricingUnavailableError("model is not available for this creator")
        return PriceSource(
            tier_token=f"{MODEL_TIER_PREFIX}{model.id}",
            content_monthly_base=model.subscription_price or MODEL_DEFAULT_PRICE_MINOR,
            period_overrides={},
            label=model.name,
        )

    if requested:
        tier = await PricingSourcesRepo.get_tier(
            session, _parse_uuid(requested, code="E_TIER_ID_INVALID")
        )
        if tier is None or tier.creator_id != creator_id or not tier.is_active:
            raise PricingUnavailableError("tier is not available for this creator")
        return PriceSource(
            tier_token=str(tier.id),
            content_monthly_base=tier.price_monthly,
            period_overrides={"3_month": tier.price_3_month, "yearly": tier.price_yearly},
            label=tier.name,
        )

    if subscription_type == "chat":
        return PriceSource(tier_token="", content_monthly_base=None, period_overrides={}, label="")

    tier = await PricingSourcesRepo.get_cheapest_active_tier(session, creator_id=creator_id)
    if tier is not None:
        return PriceSource(
            tier_token=str(tier.id),
            content_monthly_base=tier.price_monthly,
            period_overrides={"3_month": tier.price_3_month, "yearly": tier.price_yearly},
            label=tier.name,
        )

    model = await PricingSourcesRepo.get_cheapest_priced_model(session, creator_id=creator_id)
    if model is not None and model.subscription_price:
        return PriceSource(
            tier_token=f"{MODEL_TIER_PREFIX}{model.id}",
            content_monthly_base=model.subscription_price,
            period_overrides={},
            label=model.name,
        )

    raise PricingUnavailableError("creator has no active price")


async def _load_buyer_and_creator(
    session: AsyncSession,
    *,
    user_id: UUID,
    creator_id: UUID,
) -> tuple[User, Creator]:
    user = await UsersRepo.get_by_id_for_update(session, user_id)
    if user is None:
        raise BillingValidationError("subscriber not found", code="E_SUBSCRIBER_NOT_FOUND")
    creator = await CreatorsRepo.get_by_id(session, creator_id)
    if creator is None:
        raise BillingValidationError("creator not found", code="E_CREATOR_NOT_FOUND")
    if creator.user_id == user.id:
        raise BillingValidationError("cannot pay yourself", code="E_SELF_PURCHASE")
    return user, creator


async def ensure_billing_customer(
    session: AsyncSession,
    gateway: PaymentGateway,
    *,
    user: User,
) -> str:
    """Return the provider customer id, creating it once. The caller holds the user row lock."""
    if user.billing_customer_id:
        return user.billing_customer_id

    customer_id = await gateway.create_customer(
        user_id=str(user.id),
        email=user.email,
        idempotency_key=f"billing-customer:{user.id}",
    )
    await UsersRepo.set_billing_customer_id(
        session,
        user_id=user.id,
        billing_customer_id=customer_id,
    )
    user.billing_customer_id = customer_id
    logger.info("billing_customer_created", user_id=str(user.id))
    return customer_id


async def create_subscription_checkout(
    session: AsyncSession,
    gateway: PaymentGateway,
    *,
    subscriber_id: UUID,
    creator_id: UUID,
    tier_id: str | None,
    billing_period: str,
    subscription_type: str,
    now_utc: datetime,
) -> CheckoutResult:
    if subscription_type not in SUBSCRIPTION_TYPES:
        raise BillingValidationError(f"unknown subscription type: {subscription_type}")
    if billing_period not in BILLING_PERIODS:
        raise BillingValidationError(f"unknown billing period: {billing_period}")

    user, creator = await _load_buyer_and_creator(
        session,
        user_id=subscriber_id,
        creator_id=creator_id,
    )

    live = await SubscriptionsRepo.list_live_for_pair(
        session,
        subscriber_id=subscriber_id,
        creator_id=creator_id,
        statuses=LIVE_SUBSCRIPTION_STATUSES,
        for_update=True,
    )
    ensure_no_conflict((row.subscription_type for row in live), subscription_type)

    source = await _resolve_price_source(
        session,
        creator_id=creator_id,
        tier_id=tier_id,
        subscription_type=subscription_type,
    )
    quote = quote_subscription(
        subscription_type,
        billing_period,
        content_monthly_base=source.content_monthly_base,
        chat_monthly_base=get_settings().chat_monthly_base_minor,
        country_code=user.country_code,
        period_overrides=source.period_overrides,
    )

    customer_id = await ensure_billing_customer(session, gateway, user=user)
    product_name = f"{creator.display_name} {SUBSCRIPTION_TYPE_LABELS[subscription_type]}"
    if source.label:
        product_name = f"{product_name} ({source.label})"

    checkout = await gateway.create_subscription_checkout(
        customer_id=customer_id,
        amount_minor=quote.amount_minor,
        currency=quote.currency,
        interval=quote.recurrence.interval,
        interval_count=quote.recurrence.interval_count,
        product_name=product_name,
        metadata=build_subscription_metadata(
            user_id=subscriber_id,
            creator_id=creator_id,
            tier_token=source.tier_token,
            billing_period=billing_period,
            subscription_type=subscription_type,
        ),
    )
    logger.info(
        "subscription_checkout_created",
        user_id=str(subscriber_id),
        creator_id=str(creator_id),
        subscription_type=subscription_type,
        billing_period=billing_period,
        amount_minor=quote.amount_minor,
        currency=quote.currency,
        checkout_session_id=checkout.session_id,
        requested_at=now_utc.isoformat(),
    )
    return CheckoutResult(
        checkout_url=checkout.url,
        session_id=checkout.session_id,
        quote=quote,
        amount_minor=quote.amount_minor,
        currency=quote.currency,
    )


async def create_tip_checkout(
    session: AsyncSession,
    gateway: PaymentGateway,
    *,
    user_id: UUID,
    creator_id: UUID,
    amount_minor: int,
    message: str | None,
    now_utc: datetime,
) -> CheckoutResult:
    if amount_minor < TIP_MIN_MINOR or amount_minor > TIP_MAX_MINOR:
        raise BillingValidationError("tip amount out of range", code="E_TIP_AMOUNT_OUT_OF_RANGE")

    user, creator = await _load_buyer_and_creator(session, user_id=user_id, creator_id=creator_id)
    currency = currency_for_country(user.country_code)
    customer_id = await ensure_billing_customer(session, gateway, user=user)

    metadata = {"user_id": str(user_id), "creator_id": str(creator_id), "type": "tip"}
    if message and message.strip():
        metadata["message"] = message.strip()[:500]

    checkout = await gateway.create_payment_checkout(
        customer_id=customer_id,
        amount_minor=amount_minor,
        currency=currency,
        product_name=f"Tip for {creator.display_name}",
        metadata=metadata,
    )
    logger.info(
        "tip_checkout_created",
        user_id=str(user_id),
        creator_id=str(creator_id),
        amount_minor=amount_minor,
        currency=currency,
        checkout_session_id=checkout.session_id,
        requested_at=now_utc.isoformat(),
    )
    return CheckoutResult(
        checkout_url=checkout.url,
        session_id=checkout.session_id,
        amount_minor=amount_minor,
        currency=currency,
    )


async def create_token_pack_checkout(
    session: AsyncSession,
    gateway: PaymentGateway,
    *,
    user_id: UUID,
    pack_code: str,
    now_utc: datetime,
) -> CheckoutResult:
    pack = get_token_pack(pack_code)
    if pack is None:
        raise BillingValidationError(f"unknown token pack: {pack_code}", code="E_PACK_NOT_FOUND")

    user = await UsersRepo.get_by_id_for_update(session, user_id)
    if user is None:
        raise BillingValidationError("user not found", code="E_SUBSCRIBER_NOT_FOUND")

    currency = currency_for_country(user.country_code)
    amount_minor = convert_minor(pack.price_minor, from_currency=BASE_CURRENCY, to_currency=currency)
    customer_id = await ensure_billing_customer(session, gateway, user=user)
    checkout = await gateway.create_payment_checkout(
        customer_id=customer_id,
        amount_minor=amount_minor,
        currency=currency,
        product_name=pack.title,
        metadata={
            "user_id": str(user_id),
            "type": "token_purchase",
            "pack_code": pack.pack_code,
            "tokens": str(pack.tokens),
        },
    )
    logger.info(
        "token_pack_checkout_created",
        user_id=str(user_id),
        pack_code=pack.pack_code,
        amount_minor=amount_minor,
        currency=currency,
        checkout_session_id=checkout.session_id,
        requested_at=now_utc.isoformat(),
    )
    return CheckoutResult(
        checkout_url=checkout.url,
        session_id=checkout.session_id,
        amount_minor=amount_minor,
        currency=currency,
    )
