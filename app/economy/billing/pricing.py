from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from app.economy.billing.constants import (
    BASE_CURRENCY,
    BILLING_PERIODS,
    BUNDLE_DISCOUNT_FACTOR,
    PERIOD_MULTIPLIERS,
    PERIOD_RECURRENCE,
    SUBSCRIPTION_TYPES,
)
from app.economy.billing.currency import convert_minor, currency_for_country, round_half_up
from app.economy.billing.errors import BillingValidationError, PricingUnavailableError
from app.economy.billing.types import PriceQuote, Recurrence


def monthly_base_minor(
    subscription_type: str,
    *,
    content_monthly_base: int | None,
    chat_monthly_base: int,
) -> int:
    if subscription_type == "chat":
        return int(chat_monthly_base)
    if content_monthly_base is None or content_monthly_base <= 0:
        raise PricingUnavailableError("content price is not configured")
    if subscription_type == "content":
        return int(content_monthly_base)
    return round_half_up(
        Decimal(int(content_monthly_base) + int(chat_monthly_base)) * BUNDLE_DISCOUNT_FACTOR
    )


def period_amount_minor(monthly_minor: int, billing_period: str) -> int:
    months, factor = PERIOD_MULTIPLIERS[billing_period]
    gross = round_half_up(Decimal(int(monthly_minor)) * months)
    return round_half_up(Decimal(gross) * factor)


def quote_subscription(
    subscription_type: str,
    billing_period: str,
    *,
    content_monthly_base: int | None,
    chat_monthly_base: int,
    country_code: str | None,
    period_overrides: Mapping[str, int | None] | None = None,
) -> PriceQuote:
    if subscription_type not in SUBSCRIPTION_TYPES:
        raise BillingValidationError(f"unknown subscription type: {subscription_type}")
    if billing_period not in BILLING_PERIODS:
        raise BillingValidationError(f"unknown billing period: {billing_period}")

    monthly_minor = monthly_base_minor(
        subscription_type,
        content_monthly_base=content_monthly_base,
        chat_monthly_base=chat_monthly_base,
    )
    base_amount = period_amount_minor(monthly_minor, billing_period)

    # Tier overrides are content prices; they never apply to derived chat/bundle amounts.
    if subscription_type == "content" and billing_period != "monthly" and period_overrides:
        override = period_overrides.get(billing_period)
        if override is not None and override > 0:
            base_amount = int(override)

    currency = currency_for_country(country_code)
    interval, interval_count = PERIOD_RECURRENCE[billing_period]
    return PriceQuote(
        amount_minor=convert_minor(base_amount, from_currency=BASE_CURRENCY, to_currency=currency),
        currency=currency,
        base_amount_minor=base_amount,
        base_currency=BASE_CURRENCY,
        recurrence=Recurrence(interval=interval, interval_count=interval_count),
    )
