"""
habitloop.engine.ledger — Redemption Arithmetic
================================================

Pure calculation, no DB I/O.  Points are integers; currency is a
:class:`~decimal.Decimal` with two fractional digits.  Floor division on
points happens before any currency conversion, so a redemption never
leaves a fractional point behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

CENTS = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class Redemption:
    """Outcome of converting a balance snapshot into currency."""

    units: int
    points_debited: int
    currency: Decimal

    @property
    def possible(self) -> bool:
        return self.units > 0


def compute_redemption(
    balance: int,
    unit_points: int = 100,
    unit_value: Decimal = Decimal("10.00"),
) -> Redemption:
    """Redeem as many whole units as *balance* covers.

    >>> compute_redemption(150)
    Redemption(units=1, points_debited=100, currency=Decimal('10.00'))
    """
    if unit_points <= 0:
        raise ValueError("unit_points must be positive")
    units = max(balance, 0) // unit_points
    return Redemption(
        units=units,
        points_debited=units * unit_points,
        currency=(unit_value * units).quantize(CENTS),
    )


def to_currency(value: Decimal | float | int | str | None) -> Decimal:
    """Normalise a stored currency amount to two decimal places."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS)
