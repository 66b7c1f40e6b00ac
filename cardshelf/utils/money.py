"""
Cardshelf - Money Helpers

Users enter and see major currency units (dollars); the store keeps
integer minor units (cents). All money values use Decimal, never float.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

_CENTS = Decimal("100")
_TWO_DP = Decimal("0.01")


def dollars_to_cents(amount: Decimal) -> int:
    """
    Convert a major-unit amount to integer cents, rounding half up.

    Raises:
        ValueError: Negative, non-finite, or beyond the decimal exponent range.

    Examples:
        >>> dollars_to_cents(Decimal("12.345"))
        1235
    """
    if not amount.is_finite():
        raise ValueError(f"amount must be finite, got {amount}")
    if amount < Decimal("0"):
        raise ValueError(f"amount must be non-negative, got {amount}")
    try:
        # to_integral_value, unlike quantize, has no precision ceiling.
        return int((amount * _CENTS).to_integral_value(rounding=ROUND_HALF_UP))
    except ArithmeticError as e:
        raise ValueError(f"amount out of range, got {amount}") from e


def cents_to_dollars(cents: int) -> Decimal:
    """Convert integer cents back to a two-decimal major-unit amount."""
    return (Decimal(cents) / _CENTS).quantize(_TWO_DP, rounding=ROUND_HALF_UP)
