"""Gatekeeper for appending trades to a position.

validate_trade() is pure: it looks at the position's status, its current trade
log, and the candidate (anything with 'kind' and 'contracts') and decides
whether the candidate may be appended. The rules are checked in a fixed order
and the first violation is reported:

    1. OPEN is only valid on an empty position
    2. everything else needs an existing position
    3. closing trades can't close more than is open
    4. CLOSE must close exactly what is open
    5. Closed positions accept nothing
    6. Expired positions accept nothing once flat

Callers persisting trades must run the check and the insert under the same
per-position lock (see Journal) or two concurrent closes can both pass.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .models import InvalidTransition, Status, TradeKind
from .numeric import field, num
from .pnl import is_closing, is_opening, net_contracts, sort_trades, trade_kind


@dataclass(slots=True, frozen=True)
class Verdict:
    valid: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.valid


ACCEPT = Verdict(True)


def count(value: Decimal) -> int | Decimal:
    """Render whole contract counts without a trailing '.0' in messages."""
    return int(value) if value == value.to_integral_value() else value


def validate_trade(
    position: Any, existing_trades: Sequence[Any], candidate: Any
) -> Verdict:
    kind = trade_kind(field(candidate, "kind"))
    if kind is None:
        return Verdict(False, f"unknown trade kind: {field(candidate, 'kind')!r}")

    contracts = num(field(candidate, "contracts"))
    net = net_contracts(existing_trades)

    if kind == TradeKind.OPEN and existing_trades:
        return Verdict(False, "cannot OPEN: position already exists")

    if kind != TradeKind.OPEN and not existing_trades:
        return Verdict(False, "cannot add trade: no position exists")

    if is_closing(kind):
        if contracts > net:
            return Verdict(
                False,
                f"cannot close {count(contracts)} contracts: only {count(net)} open",
            )

        if kind == TradeKind.CLOSE and contracts != net:
            return Verdict(False, f"CLOSE must close all {count(net)} contracts")

    status = Status.parse(field(position, "status"))
    if status == Status.CLOSED:
        return Verdict(False, "cannot add trades to a closed position")

    if status == Status.EXPIRED and net == 0:
        return Verdict(
            False, "cannot add trades to an expired option with zero net position"
        )

    return ACCEPT


def check_trade(position: Any, existing_trades: Sequence[Any], candidate: Any) -> None:
    """Like validate_trade() but raises InvalidTransition on rejection."""
    verdict = validate_trade(position, existing_trades, candidate)
    if not verdict.valid:
        raise InvalidTransition(verdict.reason)


def history_errors(trades: Iterable[Any]) -> list[str]:
    """Audit a complete trade log and return every consistency problem found.

    Used before committing corrections or deletions: a log where some prefix
    closes more than was open would make every later snapshot clamp."""
    errors = []

    net = Decimal(0)
    for t in sort_trades(trades):
        tid = field(t, "id")
        kind = field(t, "kind")
        contracts = num(field(t, "contracts"))

        if contracts <= 0:
            errors.append(f"trade {tid}: contracts must be positive (got {contracts})")

        if num(field(t, "premium")) < 0:
            errors.append(f"trade {tid}: premium is negative")

        if num(field(t, "fee")) < 0:
            errors.append(f"trade {tid}: fee is negative")

        if is_opening(kind):
            net += contracts
        elif is_closing(kind):
            if contracts > net:
                errors.append(
                    f"trade {tid}: closes {count(contracts)} contracts with only {count(net)} open"
                )

            net -= contracts
        else:
            errors.append(f"trade {tid}: unknown kind {kind!r}")

    return errors
