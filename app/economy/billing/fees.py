from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from app.economy.billing.types import FeeSplit

PLATFORM_FEE_SCHEDULE: dict[str, Decimal] = {
    "subscription": Decimal("0.20"),
    "tip": Decimal("0.20"),
    "ppv": Decimal("0.20"),
}


def platform_fee_rate(transaction_type: str) -> Decimal:
    rate = PLATFORM_FEE_SCHEDULE.get(transaction_type)
    if rate is None:
        raise ValueError(f"no fee rate for transaction type: {transaction_type}")
    return rate


def split_gross(transaction_type: str, gross_amount: int) -> FeeSplit:
    if gross_amount <= 0:
        raise ValueError("gross amount must be positive")
    fee = int(
        (Decimal(int(gross_amount)) * platform_fee_rate(transaction_type)).to_integral_value(
            rounding=ROUND_FLOOR
        )
    )
    return FeeSplit(
        gross_amount=int(gross_amount),
        platform_fee=fee,
        net_amount=int(gross_amount) - fee,
    )
