"""Position accounting and PNL for a single option position.

Everything here is a pure function of (position, trades, optional current premium).
Nothing is cached or stored: callers recompute a snapshot on every read.

WEIGHTED AVERAGE COST (CRITICAL):
=================================

Trades are replayed in (trade_date, created_at) order while tracking the running
state {net_contracts, avg_cost, realized_pnl}:

    OPEN/ADD:      avg_cost = (net * avg_cost + contracts * premium) / (net + contracts)
                   net += contracts

    REDUCE/CLOSE:  closing = min(contracts, net)
                   SELL positions: realized += (avg_cost - premium) * closing * shares
                   BUY positions:  realized += (premium - avg_cost) * closing * shares
                   net -= closing
                   if net == 0: avg_cost = 0

Replaying out of order corrupts the average. Resetting the average when flat
means a re-opened position starts a fresh cost basis instead of blending with
the previous lot:

    OPEN 10 @ 2.0, CLOSE 10 @ 1.0, OPEN 5 @ 3.0  ->  avg_cost == 3.0

The clamp on closing quantity should never trigger when the validator gates
inserts, but historical data can be anything, so we clamp and log instead of
failing or going negative.

Records can be Trade dataclasses or plain mappings (database rows). Numeric
fields are read through numeric.num() so missing or junk values count as zero.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import arrow  # type: ignore
from loguru import logger

from .models import CLOSING_KINDS, OPENING_KINDS, Direction, TradeKind
from .numeric import D100, ZERO, field, num, ratio, shares


def trade_kind(value: Any) -> TradeKind | None:
    """Resolve a stored kind (enum or string) to a TradeKind, or None if unrecognized."""
    if isinstance(value, TradeKind):
        return value

    try:
        return TradeKind(str(value).strip().upper())
    except ValueError:
        return None


def is_opening(kind: Any) -> bool:
    return trade_kind(kind) in OPENING_KINDS


def is_closing(kind: Any) -> bool:
    return trade_kind(kind) in CLOSING_KINDS


def moment(value: Any) -> float:
    """Epoch seconds for a date, datetime, or ISO string; 0.0 when missing or unparseable.

    Naive datetimes are treated as UTC."""
    if value is None:
        return 0.0

    try:
        return arrow.get(value).timestamp()
    except (ValueError, TypeError, OverflowError):
        return 0.0


def sort_trades(trades: Iterable[Any]) -> list[Any]:
    """Chronological order by trade_date, using created_at to break same-date ties.

    sorted() is stable, so trades tied on both keys keep their input order."""
    return sorted(
        trades,
        key=lambda t: (moment(field(t, "trade_date")), moment(field(t, "created_at"))),
    )


def net_contracts(trades: Iterable[Any]) -> Decimal:
    """Signed contract total: opening kinds add, closing kinds subtract, unknown kinds are ignored."""
    total = ZERO
    for t in trades:
        kind = field(t, "kind")
        if is_opening(kind):
            total += num(field(t, "contracts"))
        elif is_closing(kind):
            total -= num(field(t, "contracts"))

    return total


def total_opened(trades: Iterable[Any]) -> Decimal:
    return sum(
        (num(field(t, "contracts")) for t in trades if is_opening(field(t, "kind"))),
        ZERO,
    )


def total_closed(trades: Iterable[Any]) -> Decimal:
    return sum(
        (num(field(t, "contracts")) for t in trades if is_closing(field(t, "kind"))),
        ZERO,
    )


def total_fees(trades: Iterable[Any]) -> Decimal:
    return sum((num(field(t, "fee")) for t in trades), ZERO)


@dataclass(slots=True, frozen=True)
class PositionStats:
    """Result of replaying a trade log.

    avg_cost is the weighted entry premium of the lot currently open (0 when flat)."""

    net_contracts: Decimal
    avg_cost: Decimal
    realized_pnl: Decimal


def compute_position_stats(
    trades: Iterable[Any], direction: Direction | str | None = None
) -> PositionStats:
    """Replay 'trades' chronologically using weighted average cost accounting.

    Without a direction, contracts and average cost are still tracked but realized
    PNL stays zero because the sign of a close can't be known."""
    side = Direction.parse(direction)

    net = ZERO
    avg = ZERO
    realized = ZERO

    for trade in sort_trades(trades):
        kind = trade_kind(field(trade, "kind"))
        contracts = num(field(trade, "contracts"))
        premium = num(field(trade, "premium"))

        if kind in OPENING_KINDS:
            cost = net * avg + contracts * premium
            net += contracts
            avg = ratio(cost, net)
        elif kind in CLOSING_KINDS:
            closing = min(contracts, net)
            if closing < contracts:
                logger.warning(
                    "Clamping close of {} contracts to {} open (trade {})",
                    contracts,
                    net,
                    field(trade, "id"),
                )

            if closing > 0:
                mult = shares(field(trade, "shares_per_contract"))
                if side == Direction.SELL:
                    # seller profits when the premium falls
                    realized += (avg - premium) * closing * mult
                elif side == Direction.BUY:
                    realized += (premium - avg) * closing * mult

                net -= closing

            if net <= 0:
                net = ZERO
                avg = ZERO

    return PositionStats(net_contracts=net, avg_cost=avg, realized_pnl=realized)


def average_entry_premium(trades: Iterable[Any]) -> Decimal:
    """Weighted entry premium of the currently open lot."""
    return compute_position_stats(trades).avg_cost


def average_exit_premium(trades: Iterable[Any]) -> Decimal:
    """Contract-weighted premium over every closing trade (a plain aggregate, not a replay)."""
    paid = ZERO
    count = ZERO
    for t in trades:
        if is_closing(field(t, "kind")):
            contracts = num(field(t, "contracts"))
            paid += num(field(t, "premium")) * contracts
            count += contracts

    return ratio(paid, count)


def position_shares(trades: Sequence[Any]) -> Decimal:
    """Shares-per-contract for position level figures, taken from the earliest trade."""
    ordered = sort_trades(trades)
    if not ordered:
        return shares(None)

    return shares(field(ordered[0], "shares_per_contract"))


def total_margin(position: Any, trades: Sequence[Any]) -> Decimal:
    """Margin held against the remaining open contracts.

    The margin percentage is the contract-weighted average over all opening trades,
    applied to the notional of what is still open (net * shares * strike)."""
    net = net_contracts(trades)
    if net <= 0:
        return ZERO

    weighted = ZERO
    opened = ZERO
    for t in trades:
        if is_opening(field(t, "kind")):
            contracts = num(field(t, "contracts"))
            weighted += contracts * num(field(t, "margin_percent"))
            opened += contracts

    pct = ratio(weighted, opened)
    strike = num(field(position, "strike"))
    return net * position_shares(trades) * strike * pct / D100


@dataclass(slots=True, frozen=True)
class OptionPNL:
    """Complete PNL snapshot for one position at one point in time."""

    total_opened: Decimal
    total_closed: Decimal
    net_contracts: Decimal
    avg_entry_premium: Decimal
    avg_exit_premium: Decimal
    total_fees: Decimal
    realized_pnl: Decimal
    unrealized_pnl: Decimal
    gross_pnl: Decimal
    net_pnl: Decimal
    return_percentage: Decimal
    total_margin: Decimal

    # cost to close the remaining contracts at the current premium (0 without a price)
    market_value: Decimal


def compute_option_pnl(
    position: Any, trades: Sequence[Any], current_premium: Any = None
) -> OptionPNL:
    """Compute the PNL snapshot for 'position' from its full trade log.

    'current_premium' is an optional live per-share premium used to mark the open
    lot to market. Without it, unrealized PNL and market value are both zero.

    Return percentage:
      - SELL: net PNL over margin held, or over strike notional of everything
        ever opened when no margin was recorded.
      - BUY: net PNL over premium paid (entry premium of the open lot times
        everything ever opened).
    """
    trades = list(trades)
    direction = Direction.parse(field(position, "direction"))
    is_sell = direction == Direction.SELL

    opened = total_opened(trades)
    closed = total_closed(trades)
    stats = compute_position_stats(trades, direction)
    net = stats.net_contracts
    entry = stats.avg_cost
    fees = total_fees(trades)
    margin = total_margin(position, trades)
    mult = position_shares(trades)

    current = None if current_premium is None else num(current_premium)

    unrealized = ZERO
    market_value = ZERO
    if net > 0 and current is not None:
        if is_sell:
            unrealized = (entry - current) * net * mult
        else:
            unrealized = (current - entry) * net * mult

        market_value = net * current * mult

    gross = stats.realized_pnl + unrealized
    netpnl = gross - fees

    if is_sell:
        base = margin if margin > 0 else num(field(position, "strike")) * opened * mult
    else:
        base = entry * opened * mult

    returned = ratio(netpnl, base) * D100 if base > 0 else ZERO

    return OptionPNL(
        total_opened=opened,
        total_closed=closed,
        net_contracts=net,
        avg_entry_premium=entry,
        avg_exit_premium=average_exit_premium(trades),
        total_fees=fees,
        realized_pnl=stats.realized_pnl,
        unrealized_pnl=unrealized,
        gross_pnl=gross,
        net_pnl=netpnl,
        return_percentage=returned,
        total_margin=margin,
        market_value=market_value,
    )
