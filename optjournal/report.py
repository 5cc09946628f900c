"""Plain-text reports for the console or logs."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from typing import Any

from .numeric import field, num
from .pnl import compute_option_pnl
from .stats import PortfolioSummary


def hkd(val) -> str:
    """format numeric input as HKD money"""
    return f"HK${num(val):,.2f}".replace("HK$-", "-HK$")


def signed_hkd(val) -> str:
    """Money with an explicit sign so gains and losses line up in columns."""
    amount = num(val)
    return f"+{hkd(amount)}" if amount > 0 else hkd(amount)


def percent(val) -> str:
    return f"{num(val):,.2f}%"


def contracts(val: Decimal) -> str:
    return f"{num(val):,.0f}"


def position_table(
    rows: Iterable[tuple[Any, Sequence[Any]]],
    premiums: Mapping[str, Any] | None = None,
) -> str:
    """Generate a formatted table of positions with their current PNL."""
    premiums = premiums or {}

    headers = [
        "Position",
        "Net",
        "Avg Entry",
        "Realized",
        "Unrealized",
        "Net PNL",
        "Return",
        "Status",
    ]

    col_widths = [len(h) for h in headers]

    table = []
    for position, trades in rows:
        pnl = compute_option_pnl(position, trades, premiums.get(field(position, "id")))
        status = field(position, "status")
        row = [
            position.describe() if hasattr(position, "describe") else str(field(position, "symbol")),
            contracts(pnl.net_contracts),
            f"{pnl.avg_entry_premium:,.4f}",
            signed_hkd(pnl.realized_pnl),
            signed_hkd(pnl.unrealized_pnl),
            signed_hkd(pnl.net_pnl),
            percent(pnl.return_percentage),
            getattr(status, "value", str(status)),
        ]
        table.append(row)

        for i, cell in enumerate(row):
            col_widths[i] = max(col_widths[i], len(cell))

    if not table:
        return "No positions found."

    separator = "+" + "+".join("-" * (w + 2) for w in col_widths) + "+"

    def line(cells):
        return "|" + "|".join(f" {c:<{w}} " for c, w in zip(cells, col_widths)) + "|"

    lines = [separator, line(headers), separator]
    lines.extend(line(row) for row in table)
    lines.append(separator)

    return "\n".join(lines)


def portfolio_report(summary: PortfolioSummary, title: str = "PORTFOLIO SUMMARY") -> str:
    lines = [title, "=" * 50, ""]

    lines.extend(
        [
            "POSITIONS:",
            f"  Total: {summary.total_positions}",
            f"  Open: {summary.open_count}",
            f"  Settled: {summary.settled_count}",
            f"  Expired: {summary.expired_count}",
            "",
            "PNL:",
            f"  Realized: {signed_hkd(summary.realized_pnl)}",
            f"  Unrealized: {signed_hkd(summary.unrealized_pnl)}",
            f"  Fees: {hkd(summary.total_fees)}",
            f"  Net: {signed_hkd(summary.total_pnl)}",
            "",
            "PERFORMANCE:",
            f"  Win Rate: {percent(summary.win_rate)}",
            f"  Avg Hold: {summary.avg_hold_days:,.1f} days",
            f"  Avg Win: {hkd(summary.average_win)}",
            f"  Avg Loss: {hkd(summary.average_loss)}",
            f"  Largest Win: {hkd(summary.largest_win)}",
            f"  Largest Loss: {hkd(summary.largest_loss)}",
            f"  Profit Factor: {summary.profit_factor:,.2f}",
            f"  Expectancy: {signed_hkd(summary.expectancy)}",
        ]
    )

    return "\n".join(lines)
