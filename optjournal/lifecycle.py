"""Position status transitions and calendar helpers.

    Open --(closing trade brings net to 0)--> Closed
    Open --(expiry date passes)-------------> Expired
    Open/Expired --(user settles)-----------> Exercised | Lapsed

Closed is terminal for trading. Expired still accepts trades while contracts
remain open (late fills recorded after the sweep ran).
"""

from __future__ import annotations

import datetime
from collections.abc import Iterable, Sequence
from typing import Any

import arrow  # type: ignore

from .config import MARKET_TZ
from .models import OptionKind, Status, lookup, now
from .numeric import field, num
from .pnl import is_closing, moment, net_contracts, sort_trades


def today() -> datetime.date:
    """Current calendar date where the options are listed."""
    return arrow.now(MARKET_TZ).date()


def as_date(value: Any) -> datetime.date:
    """Calendar date of a date, datetime, or ISO string."""
    if isinstance(value, datetime.datetime):
        return value.date()

    if isinstance(value, datetime.date):
        return value

    return arrow.get(value).date()


def stamp(value: Any, existing: Iterable[Any] = ()) -> datetime.datetime:
    """Timestamp for a new trade given as a datetime, a bare date, or nothing (now).

    A bare date gets the current market time of day, moved forward to the latest
    trade already logged on that market day so it never sorts ahead of it."""
    if value is None:
        return now()

    if isinstance(value, datetime.datetime):
        return value

    day = as_date(value)
    at = arrow.Arrow.fromdatetime(
        datetime.datetime.combine(day, arrow.now(MARKET_TZ).time()), tzinfo=MARKET_TZ
    )

    for t in existing:
        logged = arrow.get(moment(field(t, "trade_date"))).to(MARKET_TZ)
        if logged > at and logged.date() == day:
            at = logged

    return at.datetime


def should_close(trades: Sequence[Any], candidate_kind: Any) -> bool:
    """True when 'trades' (already including the new trade) is flat and the new trade was closing."""
    return is_closing(candidate_kind) and net_contracts(trades) == 0


def is_expired(position: Any, on: datetime.date | None = None) -> bool:
    """Open positions whose expiry date is strictly before 'on' (default: today).

    Expiry day itself still counts as tradable."""
    if Status.parse(field(position, "status")) != Status.OPEN:
        return False

    return as_date(field(position, "expiry")) < (on or today())


def expired_positions(positions: Iterable[Any], on: datetime.date | None = None) -> list[Any]:
    on = on or today()
    return [p for p in positions if is_expired(p, on)]


def is_in_the_money(kind: OptionKind | str, strike: Any, stock_price: Any) -> bool:
    """Calls are ITM when the stock trades above the strike, puts when below."""
    stock = num(stock_price)
    strike = num(strike)

    if lookup(OptionKind, kind) == OptionKind.CALL:
        return stock > strike

    return stock < strike


def settlement_status(position: Any, stock_price: Any = None) -> Status:
    """Suggest the terminal status of a position past expiry.

    Without a closing stock price we can only say it expired."""
    if stock_price is None:
        return Status.EXPIRED

    if is_in_the_money(field(position, "kind"), field(position, "strike"), stock_price):
        return Status.EXERCISED

    return Status.LAPSED


def days_to_expiry(expiry: Any, on: datetime.date | None = None) -> int:
    """Calendar days until expiry; negative once expired."""
    return (as_date(expiry) - (on or today())).days


def hold_days(position: Any, trades: Sequence[Any], on: datetime.date | None = None) -> int:
    """Days from the first trade to when the position stopped being held.

    Closed positions end at their last closing trade, settled or expired ones at
    expiry, and open ones today. Never negative."""
    ordered = sort_trades(trades)
    if not ordered:
        return 0

    start = as_date(field(ordered[0], "trade_date"))
    status = Status.parse(field(position, "status"))

    if status == Status.CLOSED:
        closes = [t for t in ordered if is_closing(field(t, "kind"))]
        end = as_date(field((closes or ordered)[-1], "trade_date"))
    elif status in {Status.EXPIRED, Status.EXERCISED, Status.LAPSED}:
        end = as_date(field(position, "expiry"))
    else:
        end = on or today()

    return max(0, (end - start).days)
