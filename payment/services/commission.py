from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import InvalidInputError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CommissionBreakdown:
    gross_amount: Decimal
    platform_fee_percentage: Decimal
    platform_fee: Decimal
    net_earnings: Decimal


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidInputError(f"{field_name} must be a number")
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInputError(f"{field_name} must be a number") from exc
    if not dec.is_finite():
        raise InvalidInputError(f"{field_name} must be a finite number")
    return dec


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Any, field_name: str = "amount") -> Decimal:
    """Parse an amount given in cents precision; finer values are rejected, never rounded."""
    dec = to_decimal(value, field_name)
    cents = money(dec)
    if cents != dec:
        raise InvalidInputError(f"{field_name} cannot have more than 2 decimal places")
    return cents


def to_minor_units(amount: Any) -> int:
    return int(money(to_decimal(amount)) * HUNDRED)


def from_minor_units(value: Any) -> Decimal:
    return money(to_decimal(value) / HUNDRED)


def validate_percentage(percentage: Any, field_name: str = "platform_fee_percentage") -> Decimal:
    pct = to_money(percentage, field_name)
    if pct < 0 or pct > HUNDRED:
        raise InvalidInputError(f"{field_name} must be between 0 and 100")
    return pct


def calculate_commission(gross_amount: Any, platform_fee_percentage: Any) -> CommissionBreakdown:
    """
    Split a gross sale amount into the platform fee and the vendor's net.

    Only the fee is rounded (half-up, to cents); the net is whatever remains,
    so fee + net always equals the gross amount exactly.
    """
    gross = to_money(gross_amount, "gross_amount")
    if gross < 0:
        raise InvalidInputError("gross_amount cannot be negative")
    pct = validate_percentage(platform_fee_percentage)

    fee = money(gross * pct / HUNDRED)
    return CommissionBreakdown(
        gross_amount=gross,
        platform_fee_percentage=pct,
        platform_fee=fee,
        net_earnings=gross - fee,
    )
