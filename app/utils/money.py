from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Quantize to the smallest currency unit."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Number) -> int:
    return int(to_money(value) * 100)


def fee_on(amount: Number, fee_rate: Number) -> Decimal:
    return to_money(to_money(amount) * Decimal(str(fee_rate)))


def split_amount(amount: Number, fee_rate: Number) -> tuple[Decimal, Decimal, Decimal]:
    """Return (amount, platform_fee, total_amount) with total == amount + fee exactly."""
    amount = to_money(amount)
    fee = fee_on(amount, fee_rate)
    return amount, fee, amount + fee
