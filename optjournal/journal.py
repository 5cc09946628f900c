"""Persistent journal of option positions and their trade logs.

Storage is two DualCache mappings under one namespace:

    positions: position id -> Position
    trades:    position id -> list[Trade]

DualCache persists on assignment only, so every mutation here rebuilds the
value and assigns it back. Mutating a stored Position or list in place will
NOT persist. Always go through Journal methods.

Two in-memory indexes are rebuilt from storage on startup:

    contracts:   ContractKey -> position id (one position per contract per owner)
    trade_index: trade id -> position id

CONCURRENCY:
============

Validation depends on the existing trade log, so "read trades, validate, append"
must not interleave with another writer for the same position. Each position
id gets its own lock and every write path holds it for the whole sequence.
Position creation holds the index lock so the duplicate check and the insert
are one step.

Every record is scoped by owner. Asking for another owner's position behaves
exactly like asking for one that doesn't exist.
"""

from __future__ import annotations

import dataclasses
import datetime
import threading
from collections.abc import MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from mutil.dualcache import DualCache

from .config import SHARES_PER_CONTRACT, STORAGE_PREFIX
from .lifecycle import is_expired, should_close, stamp, today
from .models import (
    ContractKey,
    Direction,
    DuplicateContract,
    InvalidTransition,
    NotFound,
    OptionKind,
    Position,
    Status,
    Trade,
    TradeKind,
    lookup,
    normalize_symbol,
    now,
    trade_input_errors,
)
from .numeric import ZERO
from .pnl import (
    OptionPNL,
    compute_option_pnl,
    is_closing,
    net_contracts,
    position_shares,
    sort_trades,
)
from .tradelang import TradeLang
from .validator import check_trade, history_errors

# Fields a user may correct on an existing trade. Kind is deliberately absent:
# turning an ADD into a CLOSE is a different trade, not a correction.
CORRECTABLE = frozenset(
    {
        "trade_date",
        "premium",
        "contracts",
        "fee",
        "margin_percent",
        "stock_price",
        "hsi",
        "notes",
    }
)

MONEY = frozenset({"premium", "fee", "margin_percent", "stock_price", "hsi"})


def money(name: str, value: Any) -> Decimal | None:
    """User-supplied amount as a finite Decimal; None stays None."""
    if value is None:
        return value

    try:
        got = Decimal(str(value).strip().replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"{name} is not a number: {value!r}") from None

    if not got.is_finite():
        raise ValueError(f"{name} is not a number: {value!r}")

    return got


def require_valid_input(kind: TradeKind, **values) -> None:
    if errors := trade_input_errors(kind, **values):
        raise ValueError("; ".join(errors))


@dataclass(slots=True)
class Journal:
    namespace: str

    positions: MutableMapping[str, Position] = field(init=False)
    trades: MutableMapping[str, list[Trade]] = field(init=False)

    contracts: dict[ContractKey, str] = field(init=False)
    trade_index: dict[str, str] = field(init=False)

    locks: dict[str, threading.Lock] = field(init=False)
    index_lock: threading.Lock = field(init=False)

    lang: TradeLang = field(init=False)

    def __post_init__(self):
        self.namespace = self.namespace.replace(" ", "-").title()
        self.positions = DualCache(cacheName=self.namespace, cachePrefix=f"{STORAGE_PREFIX}positions-")  # type: ignore[assignment]
        self.trades = DualCache(cacheName=self.namespace, cachePrefix=f"{STORAGE_PREFIX}trades-")  # type: ignore[assignment]

        self.locks = {}
        self.index_lock = threading.Lock()
        self.lang = TradeLang()
        self.reindex()

    @classmethod
    @contextmanager
    def temp(cls, name: str | None = None, keep=False):
        """Create a uniquely namespaced test instance then delete when complete"""
        import random

        if not name:
            name = f"Test Journal {random.randint(0, 200_000)}"

        created = cls(name)
        yield created

        if not keep:
            created.positions.destroy()  # type: ignore[attr-defined]
            created.trades.destroy()  # type: ignore[attr-defined]

    def reindex(self) -> None:
        """Rebuild in-memory lookup indexes from storage."""
        with self.index_lock:
            self.contracts = {p.key: pid for pid, p in self.positions.items()}
            self.trade_index = {
                t.id: pid for pid, ts in self.trades.items() for t in ts
            }

    def clear(self) -> None:
        """Remove all positions and trades to start fresh"""
        self.positions.clear()
        self.trades.clear()
        self.reindex()

    def lock(self, position_id: str) -> threading.Lock:
        with self.index_lock:
            return self.locks.setdefault(position_id, threading.Lock())

    def get_position(self, owner: str, position_id: str) -> Position:
        pos = self.positions.get(position_id)
        if pos is None or pos.owner != owner:
            raise NotFound(f"position {position_id} not found")

        return pos

    def trades_for(self, owner: str, position_id: str) -> list[Trade]:
        """Trade log of a position in chronological order."""
        self.get_position(owner, position_id)
        return sort_trades(self.trades.get(position_id, []))

    def positions_for(
        self,
        owner: str,
        status: Status | str | None = None,
        symbol: str | None = None,
    ) -> list[Position]:
        """Owner's positions, oldest first, optionally filtered by status and symbol."""
        status = lookup(Status, status) if status is not None else None
        symbol = normalize_symbol(symbol) if symbol else None

        found = [
            p
            for p in self.positions.values()
            if p.owner == owner
            and (status is None or p.status == status)
            and (symbol is None or p.symbol == symbol)
        ]

        return sorted(found, key=lambda p: p.created_at)

    def find_contract(
        self,
        owner: str,
        symbol: str,
        direction: Direction | str,
        kind: OptionKind | str,
        strike: Any,
        expiry: datetime.date,
    ) -> Position | None:
        key = ContractKey(
            owner,
            normalize_symbol(symbol),
            lookup(Direction, direction),
            lookup(OptionKind, kind),
            Decimal(str(strike)),
            expiry,
        )

        if pid := self.contracts.get(key):
            return self.positions.get(pid)

        return None

    def snapshot(
        self, owner: str, position_id: str, current_premium: Any = None
    ) -> OptionPNL:
        """Fresh PNL for one position. Never cached: trades may have changed since the last call."""
        position = self.get_position(owner, position_id)
        return compute_option_pnl(
            position, self.trades.get(position_id, []), current_premium
        )

    def rows(self, owner: str, **filters) -> list[tuple[Position, list[Trade]]]:
        """(position, trades) pairs for statistics and reports."""
        return [
            (p, sort_trades(self.trades.get(p.id, [])))
            for p in self.positions_for(owner, **filters)
        ]

    def open_position(
        self,
        owner: str,
        symbol: str,
        direction: Direction | str,
        kind: OptionKind | str,
        strike: Any,
        expiry: datetime.date,
        contracts: int,
        premium: Any,
        *,
        market_code: str | None = None,
        trade_date: datetime.date | datetime.datetime | None = None,
        shares_per_contract: int = SHARES_PER_CONTRACT,
        fee: Any = ZERO,
        margin_percent: Any = None,
        stock_price: Any = None,
        hsi: Any = None,
        notes: str = "",
    ) -> tuple[Position, Trade]:
        """Create a position together with its OPEN trade.

        Raises DuplicateContract if the owner already tracks this exact contract."""
        strike = money("strike", strike)
        premium = money("premium", premium)
        fee = money("fee", fee)
        margin_percent = money("margin_percent", margin_percent)

        if strike is None or strike <= 0:
            raise ValueError(f"strike must be greater than 0 (got {strike})")

        require_valid_input(
            TradeKind.OPEN,
            contracts=contracts,
            premium=premium,
            shares_per_contract=shares_per_contract,
            fee=fee,
            margin_percent=margin_percent,
        )

        position = Position(
            owner=owner,
            symbol=symbol,
            direction=direction,
            kind=kind,
            strike=strike,
            expiry=expiry,
            market_code=market_code,
        )

        trade = Trade(
            position_id=position.id,
            kind=TradeKind.OPEN,
            contracts=contracts,
            premium=premium,
            trade_date=stamp(trade_date),
            shares_per_contract=shares_per_contract,
            fee=fee,
            margin_percent=margin_percent,
            stock_price=money("stock_price", stock_price),
            hsi=money("hsi", hsi),
            notes=notes,
        )

        with self.index_lock:
            if position.key in self.contracts:
                raise DuplicateContract(
                    f"{owner} already tracks {position.describe()} as position {self.contracts[position.key]}"
                )

            check_trade(position, [], trade)

            # trades first: a position without its trades would show as flat
            self.trades[position.id] = [trade]
            self.positions[position.id] = position
            self.contracts[position.key] = position.id
            self.trade_index[trade.id] = position.id

        logger.info(
            "[{}] Opened {}: {} @ {}",
            owner,
            position.describe(),
            contracts,
            premium,
        )

        return position, trade

    def add_trade(
        self,
        owner: str,
        position_id: str,
        kind: TradeKind | str,
        contracts: int,
        premium: Any,
        *,
        trade_date: datetime.date | datetime.datetime | None = None,
        shares_per_contract: int | None = None,
        fee: Any = ZERO,
        margin_percent: Any = None,
        stock_price: Any = None,
        hsi: Any = None,
        notes: str = "",
    ) -> tuple[Trade, bool]:
        """Append a trade to an existing position.

        Returns the stored trade and whether it closed the position (net contracts
        reached zero on a closing trade). Raises InvalidTransition when the trade
        isn't allowed in the position's current state."""
        kind = lookup(TradeKind, kind)
        premium = money("premium", premium)
        fee = money("fee", fee)
        margin_percent = money("margin_percent", margin_percent)

        require_valid_input(
            kind,
            contracts=contracts,
            premium=premium,
            shares_per_contract=shares_per_contract,
            fee=fee,
            margin_percent=margin_percent,
        )

        with self.lock(position_id):
            position = self.get_position(owner, position_id)
            existing = self.trades.get(position_id, [])

            trade = Trade(
                position_id=position_id,
                kind=kind,
                contracts=contracts,
                premium=premium,
                trade_date=stamp(trade_date, existing),
                # follow-up trades inherit the position's multiplier
                shares_per_contract=shares_per_contract
                or int(position_shares(existing)),
                fee=fee,
                margin_percent=margin_percent,
                stock_price=money("stock_price", stock_price),
                hsi=money("hsi", hsi),
                notes=notes,
            )

            check_trade(position, existing, trade)

            # a back-dated trade can pass against the total yet break an earlier prefix
            updated = existing + [trade]
            if errors := history_errors(updated):
                raise InvalidTransition("; ".join(errors))

            self.trades[position_id] = updated
            self.trade_index[trade.id] = position_id

            closed = should_close(updated, kind)
            if closed:
                self.store_status(position, Status.CLOSED)

        logger.info(
            "[{}] {} {} @ {} on {}{}",
            owner,
            kind.value,
            contracts,
            premium,
            position.describe(),
            " (closed)" if closed else "",
        )

        return trade, closed

    def locate(self, owner: str, trade_id: str) -> tuple[Position, list[Trade], int]:
        """Find a trade's position, the position's trade list, and the trade's index in it."""
        pid = self.trade_index.get(trade_id)
        if pid is None:
            raise NotFound(f"trade {trade_id} not found")

        position = self.get_position(owner, pid)
        trades = list(self.trades.get(pid, []))
        for idx, t in enumerate(trades):
            if t.id == trade_id:
                return position, trades, idx

        raise NotFound(f"trade {trade_id} not found")

    def update_trade(self, owner: str, trade_id: str, **corrections) -> Trade:
        """Correct fields of a recorded trade.

        Only CORRECTABLE fields are accepted. The corrected log must still be
        consistent (no prefix closing more than was open) or nothing is changed."""
        if "kind" in corrections:
            raise InvalidTransition("trade kind can't be changed; delete and re-enter the trade")

        if unknown := set(corrections) - CORRECTABLE:
            raise ValueError(f"not correctable: {', '.join(sorted(unknown))}")

        for name in MONEY & set(corrections):
            corrections[name] = money(name, corrections[name])

        pid = self.trade_index.get(trade_id)
        if pid is None:
            raise NotFound(f"trade {trade_id} not found")

        with self.lock(pid):
            position, trades, idx = self.locate(owner, trade_id)
            if "trade_date" in corrections:
                corrections["trade_date"] = stamp(
                    corrections["trade_date"], trades[:idx] + trades[idx + 1 :]
                )

            fixed = dataclasses.replace(trades[idx], **corrections)

            require_valid_input(
                fixed.kind,
                contracts=fixed.contracts,
                premium=fixed.premium,
                shares_per_contract=fixed.shares_per_contract,
                fee=fixed.fee,
                margin_percent=fixed.margin_percent,
            )

            trades[idx] = fixed
            if errors := history_errors(trades):
                raise InvalidTransition("; ".join(errors))

            self.trades[pid] = trades
            self.reconcile(position, trades)

        logger.info(
            "[{}] Corrected trade {} on {}: {}",
            owner,
            trade_id,
            position.describe(),
            corrections,
        )

        return fixed

    def delete_trade(self, owner: str, trade_id: str) -> None:
        """Remove one trade, refusing if the remaining log would become inconsistent."""
        pid = self.trade_index.get(trade_id)
        if pid is None:
            raise NotFound(f"trade {trade_id} not found")

        with self.lock(pid):
            position, trades, idx = self.locate(owner, trade_id)
            del trades[idx]

            if errors := history_errors(trades):
                raise InvalidTransition("; ".join(errors))

            self.trades[pid] = trades
            del self.trade_index[trade_id]
            self.reconcile(position, trades)

        logger.info("[{}] Deleted trade {} from {}", owner, trade_id, position.describe())

    def delete_position(self, owner: str, position_id: str) -> None:
        """Remove a position and its entire trade log."""
        with self.lock(position_id):
            position = self.get_position(owner, position_id)

            for t in self.trades.get(position_id, []):
                self.trade_index.pop(t.id, None)

            if position_id in self.trades:
                del self.trades[position_id]

            del self.positions[position_id]

            with self.index_lock:
                self.contracts.pop(position.key, None)
                self.locks.pop(position_id, None)

        logger.info("[{}] Deleted {}", owner, position.describe())

    def store_status(self, position: Position, status: Status) -> Position:
        """Persist a status change. Caller holds the position lock."""
        if position.status != status:
            logger.info(
                "[{}] {}: {} -> {}",
                position.owner,
                position.describe(),
                position.status.value,
                status.value,
            )

        position.status = status
        position.updated_at = now()

        # re-assign so DualCache persists the change
        self.positions[position.id] = position
        return position

    def reconcile(self, position: Position, trades: list[Trade]) -> Position:
        """Align Open/Closed with a corrected trade log. Caller holds the position lock.

        A Closed position that has contracts again reopens; an Open position made
        flat by its last (closing) trade closes. Other statuses are left alone."""
        net = net_contracts(trades)
        ordered = sort_trades(trades)

        if position.status == Status.CLOSED and net > 0:
            return self.store_status(position, Status.OPEN)

        if (
            position.status == Status.OPEN
            and ordered
            and net == 0
            and is_closing(ordered[-1].kind)
        ):
            return self.store_status(position, Status.CLOSED)

        return position

    def set_status(
        self, owner: str, position_id: str, status: Status | str
    ) -> Position:
        """Explicit user-driven status change (e.g. settling as Exercised or Lapsed)."""
        status = lookup(Status, status)
        with self.lock(position_id):
            return self.store_status(self.get_position(owner, position_id), status)

    def expire_positions(
        self, owner: str | None = None, on: datetime.date | None = None
    ) -> list[Position]:
        """Move every Open position whose expiry has passed to Expired.

        Covers all owners unless 'owner' is given. Returns the positions changed."""
        on = on or today()
        expired = []

        for pid in list(self.positions.keys()):
            with self.lock(pid):
                position = self.positions.get(pid)
                if position is None or (owner is not None and position.owner != owner):
                    continue

                if is_expired(position, on):
                    expired.append(self.store_status(position, Status.EXPIRED))

        if expired:
            logger.info("Expired {} position(s) as of {}", len(expired), on)

        return expired

    def record(
        self, owner: str, text: str, position_id: str | None = None
    ) -> tuple[Position, Trade, bool]:
        """Record a trade written as one line of text (see tradelang).

        'open' lines must describe the contract. Other lines apply to 'position_id',
        or to the owner's position matching the contract given in the line.

        Returns (position, trade, closed)."""
        entry = self.lang.parse(text)
        spec = entry.contract

        if entry.kind == TradeKind.OPEN:
            if spec is None:
                raise ValueError(
                    "opening a position needs the contract: "
                    "'<buy|sell> <call|put> SYMBOL STRIKE EXPIRY open N @ PREMIUM'"
                )

            position, trade = self.open_position(
                owner,
                spec.symbol,
                spec.direction,
                spec.kind,
                spec.strike,
                spec.expiry,
                entry.contracts,
                entry.premium,
                **entry.fields(),
            )

            return position, trade, False

        if position_id is None:
            if spec is None:
                raise ValueError("no position given for trade")

            found = self.find_contract(
                owner, spec.symbol, spec.direction, spec.kind, spec.strike, spec.expiry
            )

            if found is None:
                raise NotFound(f"no position for {spec.symbol} {spec.strike} {spec.expiry}")

            position_id = found.id

        trade, closed = self.add_trade(
            owner,
            position_id,
            entry.kind,
            entry.contracts,
            entry.premium,
            **entry.fields(),
        )

        return self.get_position(owner, position_id), trade, closed
