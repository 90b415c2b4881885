from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

SUBSCRIPTION_TYPES: tuple[str, ...] = ("content", "chat", "bundle")
BILLING_PERIODS: tuple[str, ...] = ("monthly", "3_month", "yearly")

BASE_CURRENCY = "gbp"
BUNDLE_DISCOUNT_FACTOR = Decimal("0.85")
PERIOD_MULTIPLIERS: dict[str, tuple[int, Decimal]] = {
    "monthly": (1, Decimal("1")),
    "3_month": (3, Decimal("0.90")),
    "yearly": (12, Decimal("0.75")),
}
PERIOD_RECURRENCE: dict[str, tuple[str, int]] = {
    "monthly": ("month", 1),
    "3_month": ("month", 3),
    "yearly": ("year", 1),
}
# Used when the provider subscription window is not available on checkout completion.
PERIOD_FALLBACK_LENGTH: dict[str, timedelta] = {
    "monthly": timedelta(days=30),
    "3_month": timedelta(days=90),
    "yearly": timedelta(days=365),
}

MODEL_TIER_PREFIX = "model-"
MODEL_DEFAULT_PRICE_MINOR = 999

TIP_MIN_MINOR = 100
TIP_MAX_MINOR = 50_000

SUBSCRIBER_COUNT_TYPES: frozenset[str] = frozenset({"content", "bundle"})
LIVE_SUBSCRIPTION_STATUSES: tuple[str, ...] = ("active", "past_due")

NOTIFICATION_NEW_SUBSCRIBER = "new_subscriber"
NOTIFICATION_TIP = "tip"
NOTIFICATION_EVENT_TYPES: tuple[str, ...] = (NOTIFICATION_NEW_SUBSCRIBER, NOTIFICATION_TIP)

SUBSCRIPTION_TYPE_LABELS: dict[str, str] = {
    "content": "Fan",
    "chat": "Chat",
    "bundle": "Fan + Chat",
}
