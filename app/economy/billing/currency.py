from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.economy.billing.constants import BASE_CURRENCY

COUNTRY_CURRENCIES: dict[str, str] = {
    "GB": "gbp",
    "UK": "gbp",
}
DEFAULT_CURRENCY = "usd"

# Units of each currency per one unit of the base currency.
EXCHANGE_RATES: dict[str, Decimal] = {
    "gbp": Decimal("1"),
    "usd": Decimal("1.27"),
}


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def currency_for_country(country_code: str | None) -> str:
    if not country_code:
        return DEFAULT_CURRENCY
    return COUNTRY_CURRENCIES.get(country_code.strip().upper(), DEFAULT_CURRENCY)


def convert_minor(amount_minor: int, *, from_currency: str, to_currency: str) -> int:
    source = from_currency.lower()
    target = to_currency.lower()
    if source not in EXCHANGE_RATES or target not in EXCHANGE_RATES:
        raise ValueError(f"unsupported currency pair: {from_currency}->{to_currency}")
    if source == target:
        return int(amount_minor)

    in_base = (
        int(amount_minor)
        if source == BASE_CURRENCY
        else round_half_up(Decimal(int(amount_minor)) / EXCHANGE_RATES[source])
    )
    if target == BASE_CURRENCY:
        return in_base
    return round_half_up(Decimal(in_base) * EXCHANGE_RATES[target])


def minor_to_decimal(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / Decimal(100)).quantize(Decimal("0.01"))
