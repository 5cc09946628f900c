"""Portfolio statistics across many positions.

Every figure is derived from fresh engine snapshots, so statistics always agree
with what the per-position PNL shows.

Win rate and the win/loss metrics only count settled positions (Closed,
Exercised, Lapsed) since an open position hasn't won or lost anything yet.
A win is a settled position with net PNL above zero; breakeven counts against.
"""

from __future__ import annotations

import datetime
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .lifecycle import hold_days, today
from .models import SETTLED, Status, lookup
from .numeric import D100, ZERO, field, ratio
from .pnl import OptionPNL, compute_option_pnl

Row = tuple[Any, Sequence[Any]]


@dataclass(slots=True, frozen=True)
class PortfolioSummary:
    total_positions: int
    open_count: int
    settled_count: int
    expired_count: int

    realized_pnl: Decimal
    unrealized_pnl: Decimal
    total_fees: Decimal
    total_pnl: Decimal

    # percent of settled positions with positive net PNL
    win_rate: Decimal
    avg_hold_days: Decimal

    average_win: Decimal
    average_loss: Decimal
    largest_win: Decimal
    largest_loss: Decimal

    # gross wins over gross losses (0 when nothing was lost)
    profit_factor: Decimal

    # expected net PNL per settled position
    expectancy: Decimal


@dataclass(slots=True, frozen=True)
class SymbolSummary(PortfolioSummary):
    symbol: str
    status_counts: dict[Status, int]


def _snapshots(
    rows: Iterable[Row], premiums: Mapping[str, Any] | None
) -> list[tuple[Any, Sequence[Any], OptionPNL]]:
    premiums = premiums or {}
    return [
        (p, trades, compute_option_pnl(p, trades, premiums.get(field(p, "id"))))
        for p, trades in rows
    ]


def _figures(
    snaps: list[tuple[Any, Sequence[Any], OptionPNL]], on: datetime.date
) -> dict[str, Any]:
    settled = [
        (p, t, s) for p, t, s in snaps if Status.parse(field(p, "status")) in SETTLED
    ]
    results = [s.net_pnl for _, _, s in settled]
    wins = [r for r in results if r > 0]
    losses = [r for r in results if r < 0]

    count = Decimal(len(results))
    win_rate = ratio(Decimal(len(wins)), count) * D100
    loss_rate = ratio(Decimal(len(losses)), count) * D100
    average_win = ratio(sum(wins, ZERO), Decimal(len(wins)))
    average_loss = ratio(sum(losses, ZERO), Decimal(len(losses)))

    held = [hold_days(p, t, on) for p, t, _ in settled]

    return dict(
        total_positions=len(snaps),
        open_count=sum(
            1 for p, _, _ in snaps if Status.parse(field(p, "status")) == Status.OPEN
        ),
        settled_count=len(settled),
        expired_count=sum(
            1 for p, _, _ in snaps if Status.parse(field(p, "status")) == Status.EXPIRED
        ),
        realized_pnl=sum((s.realized_pnl for _, _, s in snaps), ZERO),
        unrealized_pnl=sum((s.unrealized_pnl for _, _, s in snaps), ZERO),
        total_fees=sum((s.total_fees for _, _, s in snaps), ZERO),
        total_pnl=sum((s.net_pnl for _, _, s in snaps), ZERO),
        win_rate=win_rate,
        avg_hold_days=ratio(Decimal(sum(held)), Decimal(len(held))),
        average_win=average_win,
        average_loss=average_loss,
        largest_win=max(wins, default=ZERO),
        largest_loss=min(losses, default=ZERO),
        profit_factor=ratio(sum(wins, ZERO), -sum(losses, ZERO)),
        expectancy=(win_rate * average_win + loss_rate * average_loss) / D100,
    )


def summarize(
    rows: Iterable[Row],
    premiums: Mapping[str, Any] | None = None,
    on: datetime.date | None = None,
) -> PortfolioSummary:
    """Summarize (position, trades) pairs.

    'premiums' maps position id to a live premium for marking open positions;
    positions without an entry contribute no unrealized PNL."""
    return PortfolioSummary(**_figures(_snapshots(rows, premiums), on or today()))


def symbol_summary(
    rows: Iterable[Row],
    premiums: Mapping[str, Any] | None = None,
    on: datetime.date | None = None,
) -> dict[str, SymbolSummary]:
    """Per-symbol summaries keyed by normalized symbol."""
    on = on or today()

    grouped = defaultdict(list)
    for snap in _snapshots(rows, premiums):
        grouped[field(snap[0], "symbol")].append(snap)

    return {
        symbol: SymbolSummary(
            symbol=symbol,
            status_counts=dict(Counter(lookup(Status, field(p, "status")) for p, _, _ in snaps)),
            **_figures(snaps, on),
        )
        for symbol, snaps in sorted(grouped.items())
    }
