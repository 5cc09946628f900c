"""Numeric coercion shared by the accounting engine and the validator.

Trade records arrive from storage with money as decimal strings, from user input
as floats, or not at all. Everything funnels through num() so the engine sees
one representation: a finite Decimal, with anything unusable becoming zero.

The engine is a reporting path, so we prefer a degenerate zero over raising."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Final

from .config import SHARES_PER_CONTRACT

ZERO: Final = Decimal("0")
D100: Final = Decimal("100")


def num(value: Any) -> Decimal:
    """Coerce 'value' to a finite Decimal, returning ZERO for None, junk, NaN, or infinity."""
    if value is None or isinstance(value, bool):
        return ZERO

    if isinstance(value, Decimal):
        got = value
    else:
        try:
            # str() first so floats become their shortest repr (1.1 -> "1.1")
            # instead of their exact binary expansion.
            got = Decimal(str(value).strip().replace(",", ""))
        except (InvalidOperation, ValueError, TypeError):
            return ZERO

    if not got.is_finite():
        return ZERO

    return got


def ratio(top: Decimal, bottom: Decimal) -> Decimal:
    """Divide, except a zero denominator yields ZERO instead of raising."""
    if not bottom:
        return ZERO

    return top / bottom


def shares(value: Any) -> Decimal:
    """Shares-per-contract multiplier, falling back to the board lot when missing or zero."""
    return num(value) or Decimal(SHARES_PER_CONTRACT)


def field(record: Any, name: str, default: Any = None) -> Any:
    """Read 'name' from a dataclass/ORM object or from a mapping row."""
    if isinstance(record, dict):
        return record.get(name, default)

    getter = getattr(record, "get", None)
    if getter is not None and not hasattr(record, name):
        return getter(name, default)

    return getattr(record, name, default)
