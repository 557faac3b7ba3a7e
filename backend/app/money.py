"""Integer minor-unit money helpers.

Every amount inside the billing core is a ``Cents`` integer. Conversion to or
from major units (pesos, dollars) only happens at the presentation edge, e.g.
printable receipts or spreadsheet imports.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import NewType

Cents = NewType("Cents", int)

_CENTS_PER_UNIT = 100


def ensure_cents(value: object) -> Cents:
    """Return ``value`` as ``Cents`` or raise ``TypeError`` for non-integers.

    Floats are always rejected. Decimals are accepted only when integral, which
    covers values read back from ``Numeric`` columns on some drivers.
    """

    if isinstance(value, bool):
        raise TypeError("Boolean values are not money amounts")
    if isinstance(value, int):
        return Cents(value)
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return Cents(int(value))
    raise TypeError(
        f"Amounts must be integer cents, got {type(value).__name__}: {value!r}"
    )


def cents_from_major(value: Decimal | str | int) -> Cents:
    """Convert a major-unit value (``"914.30"``) to cents, rounding half up."""

    if isinstance(value, float):
        raise TypeError("Use a string or Decimal for major-unit amounts, not float")
    try:
        major = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid money amount: {value!r}") from exc
    cents = (major * _CENTS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return Cents(int(cents))


def cents_to_major(value: int) -> Decimal:
    return (Decimal(ensure_cents(value)) / _CENTS_PER_UNIT).quantize(Decimal("0.01"))


def format_major(value: int, symbol: str = "$") -> str:
    """Render cents for display, e.g. ``91430`` -> ``"$914.30"``."""

    major = cents_to_major(value)
    sign = "-" if major < 0 else ""
    return f"{sign}{symbol}{abs(major):,.2f}"
