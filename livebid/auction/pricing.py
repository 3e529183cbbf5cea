"""Monetary helpers for bid validation."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any) -> Decimal | None:
    """Return a positive, finite amount rounded to cents, or None."""
    if value is None or isinstance(value, bool):
        return None
    value_str = str(value).strip()
    if not value_str:
        return None
    try:
        amount = Decimal(value_str)
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite():
        return None
    amount = quantize(amount)
    if amount <= 0:
        return None
    return amount


def minimum_next_bid(leading_amount: Decimal, bid_increment: Decimal) -> Decimal:
    return quantize(leading_amount + bid_increment)


def format_amount(amount: Decimal) -> str:
    return f"{quantize(amount):.2f}"
