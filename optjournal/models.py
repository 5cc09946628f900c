"""Journal records: option positions and the trades logged against them.

A Position is one option contract the user holds or held. It never stores
quantities or prices of its own. Everything about size, cost basis, and profit
is derived from its Trade log by the engine in pnl.py on every read.

TRADE DATA FORMAT:
==================

- contracts: ALWAYS positive. Direction of the size change comes from `kind`.
- premium: per-share price, never negative.
- shares_per_contract: multiplier from per-share premium to per-contract cash
  (HKEX board lots, 500 by default).
- trade_date orders the log; created_at breaks ties for same-day entries.

OPENING kinds (OPEN, ADD) grow the position, CLOSING kinds (REDUCE, CLOSE) shrink it.
OPEN is only valid as the first trade and CLOSE must flatten the position exactly.
"""

from __future__ import annotations

import datetime
import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import NamedTuple

from .config import SHARES_PER_CONTRACT
from .numeric import ZERO


class JournalError(Exception):
    """Base class for everything the journal refuses to do."""


class InvalidTransition(JournalError, ValueError):
    """A trade would break the position's state rules (over-close, double open, etc)."""


class NotFound(JournalError, LookupError):
    """Position or trade doesn't exist for the requesting owner."""


class DuplicateContract(JournalError, ValueError):
    """Owner already tracks a position for the same contract."""


def lookup(cls, value):
    """Enum member from a member, value, or name in any case ('sell', 'SELL', 'Sell')."""
    if isinstance(value, cls):
        return value

    want = str(value).strip().lower()
    for member in cls:
        if want in {member.value.lower(), member.name.lower()}:
            return member

    raise ValueError(f"{value!r} is not a valid {cls.__name__}")


class Direction(str, Enum):
    BUY = "Buy"
    SELL = "Sell"

    @classmethod
    def parse(cls, value) -> Direction | None:
        """Like lookup() but None for anything unrecognized."""
        if value is None:
            return None

        try:
            return lookup(cls, value)
        except ValueError:
            return None


class OptionKind(str, Enum):
    CALL = "Call"
    PUT = "Put"


class Status(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"
    EXPIRED = "Expired"
    EXERCISED = "Exercised"
    LAPSED = "Lapsed"

    @classmethod
    def parse(cls, value) -> Status | None:
        if value is None:
            return None

        try:
            return lookup(cls, value)
        except ValueError:
            return None


class TradeKind(str, Enum):
    OPEN = "OPEN"
    ADD = "ADD"
    REDUCE = "REDUCE"
    CLOSE = "CLOSE"


OPENING_KINDS = frozenset({TradeKind.OPEN, TradeKind.ADD})
CLOSING_KINDS = frozenset({TradeKind.REDUCE, TradeKind.CLOSE})

# statuses after which the position is done being traded
SETTLED = frozenset({Status.CLOSED, Status.EXERCISED, Status.LAPSED})


def now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def newid() -> str:
    return uuid.uuid4().hex


def normalize_symbol(symbol: str) -> str:
    """Uppercase and trim, then zero-pad numeric HK codes: '700' -> '00700.HK'."""
    clean = symbol.strip().upper()

    if clean.isdigit():
        clean += ".HK"

    if m := re.fullmatch(r"(\d+)\.HK", clean):
        return f"{m.group(1).zfill(5)}.HK"

    return clean


class ContractKey(NamedTuple):
    """Natural identity of a tracked contract; one position per key."""

    owner: str
    symbol: str
    direction: Direction
    kind: OptionKind
    strike: Decimal
    expiry: datetime.date


@dataclass(slots=True)
class Position:
    owner: str
    symbol: str
    direction: Direction
    kind: OptionKind
    strike: Decimal
    expiry: datetime.date
    status: Status = Status.OPEN

    # external market-data reference (e.g. HK.TCH240627C350000) for live premiums
    market_code: str | None = None

    id: str = field(default_factory=newid)
    created_at: datetime.datetime = field(default_factory=now)
    updated_at: datetime.datetime = field(default_factory=now)

    def __post_init__(self):
        self.symbol = normalize_symbol(self.symbol)
        self.direction = lookup(Direction, self.direction)
        self.kind = lookup(OptionKind, self.kind)
        self.status = lookup(Status, self.status)

        # Decimal hashes by value, so 350 and 350.00 land on the same ContractKey
        self.strike = Decimal(str(self.strike))

    @property
    def key(self) -> ContractKey:
        return ContractKey(
            self.owner, self.symbol, self.direction, self.kind, self.strike, self.expiry
        )

    @property
    def is_sell(self) -> bool:
        return self.direction == Direction.SELL

    def describe(self) -> str:
        return f"{self.symbol} {self.direction.value} {self.kind.value} HKD {self.strike:.2f} {self.expiry}"


@dataclass(slots=True)
class Trade:
    """One immutable event against a position.

    Corrections go through Journal.update_trade() which swaps in a replaced copy;
    nothing edits a stored Trade in place."""

    position_id: str
    kind: TradeKind
    contracts: int
    premium: Decimal

    trade_date: datetime.datetime = field(default_factory=now)
    shares_per_contract: int = SHARES_PER_CONTRACT
    fee: Decimal = ZERO
    margin_percent: Decimal | None = None

    # market context at the time of the trade, for review only
    stock_price: Decimal | None = None
    hsi: Decimal | None = None
    notes: str = ""

    id: str = field(default_factory=newid)
    created_at: datetime.datetime = field(default_factory=now)

    def __post_init__(self):
        self.kind = lookup(TradeKind, self.kind)

    @property
    def is_opening(self) -> bool:
        return self.kind in OPENING_KINDS

    @property
    def is_closing(self) -> bool:
        return self.kind in CLOSING_KINDS


def finite(value) -> Decimal | None:
    """Decimal for a finite number, None for anything else (junk, NaN, Infinity)."""
    try:
        got = Decimal(str(value))
    except ArithmeticError:
        return None

    return got if got.is_finite() else None


def trade_input_errors(
    kind: TradeKind,
    contracts,
    premium,
    shares_per_contract=SHARES_PER_CONTRACT,
    fee=ZERO,
    margin_percent=None,
) -> list[str]:
    """Check user-provided trade fields before they are persisted.

    Returns every problem found (empty when the input is acceptable).
    Closing premiums may be zero (buying back a worthless option), opening premiums may not."""
    errors = []

    if isinstance(contracts, bool) or not isinstance(contracts, int | Decimal):
        errors.append(f"contracts must be a whole number (got {contracts!r})")
    elif isinstance(contracts, Decimal) and not contracts.is_finite():
        errors.append(f"contracts must be a whole number (got {contracts!r})")
    elif contracts <= 0 or contracts != int(contracts):
        errors.append(f"contracts must be a positive whole number (got {contracts})")

    p = finite(premium)
    if p is None:
        errors.append(f"premium is not a number (got {premium!r})")
    elif p < 0:
        errors.append(f"premium cannot be negative (got {p})")
    elif p == 0 and lookup(TradeKind, kind) in OPENING_KINDS:
        errors.append("opening premium must be greater than 0")

    if shares_per_contract is not None and shares_per_contract <= 0:
        errors.append(f"shares per contract must be greater than 0 (got {shares_per_contract})")

    if fee is not None:
        f = finite(fee)
        if f is None:
            errors.append(f"fee is not a number (got {fee!r})")
        elif f < 0:
            errors.append(f"fee cannot be negative (got {fee})")

    if margin_percent is not None:
        m = finite(margin_percent)
        if m is None:
            errors.append(f"margin percent is not a number (got {margin_percent!r})")
        elif m < 0:
            errors.append(f"margin percent cannot be negative (got {margin_percent})")

    return errors
