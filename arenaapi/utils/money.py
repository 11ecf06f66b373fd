from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from arenaapi.core.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")

Amount = Union[Decimal, int, float, str]


def to_money(value: Amount) -> Decimal:
    """금액을 소수점 2자리 Decimal로 정규화 (float는 문자열 경유)"""
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value}")


def to_positive_money(value: Amount) -> Decimal:
    amount = to_money(value)
    if amount <= ZERO:
        raise ValidationError("Amount must be greater than zero")
    return amount
