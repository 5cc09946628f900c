"""One-line trade entry.

Record a trade from a single line of text instead of filling in every field:

    sell put 700 350 2024-06-27 open 10 @ 5.0 margin 20% stock 362.4 # earnings play
    add 5 @ 4.2 fee 30
    close 15 @ 1.10 on 2024-06-20

The contract prefix (direction, option kind, symbol, strike, expiry) is only
needed when opening a new position; follow-up trades name the position some
other way (Journal.record(position_id=...)).
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal

from lark import Lark, Transformer, v_args

from .models import Direction, OptionKind, TradeKind, normalize_symbol

lang = r"""
    entry: contract? action fill extra* note?

    contract: side optkind SYMBOL NUMBER DATE

    side: buy | sell
    buy: "buy"i | "long"i
    sell: "sell"i | "short"i

    optkind: call | put
    call: "call"i
    put: "put"i

    action: open | add | reduce | close
    open: "open"i
    add: "add"i
    reduce: "reduce"i
    close: "close"i

    // contracts @ per-share premium
    fill: INT "@" NUMBER

    extra: fee | margin | shares | on | stock | hsi
    fee: "fee"i NUMBER
    margin: "margin"i NUMBER "%"?
    shares: "shares"i INT
    on: "on"i DATE
    stock: "stock"i NUMBER
    hsi: "hsi"i NUMBER

    note: NOTE

    // HK listings are numeric codes, everything else is letters
    SYMBOL: /[A-Za-z0-9][A-Za-z0-9.]*/
    DATE: /\d{4}-\d{2}-\d{2}/
    NUMBER: /\d+(?:\.\d+)?/
    INT: /\d+/
    NOTE: /#[^\n]*/

    WHITESPACE: (" " | "\t" | "\n")+
    %ignore WHITESPACE
"""


@dataclass(slots=True)
class ContractSpec:
    direction: Direction
    kind: OptionKind
    symbol: str
    strike: Decimal
    expiry: datetime.date


@dataclass(slots=True)
class TradeEntry:
    """Parsed trade line. Unset extras are None so callers can apply their own defaults."""

    kind: TradeKind
    contracts: int
    premium: Decimal
    contract: ContractSpec | None = None

    fee: Decimal | None = None
    margin_percent: Decimal | None = None
    shares_per_contract: int | None = None
    trade_date: datetime.date | None = None
    stock_price: Decimal | None = None
    hsi: Decimal | None = None
    notes: str = ""

    def fields(self) -> dict:
        """Trade keyword arguments that were actually given in the line."""
        got = {
            "fee": self.fee,
            "margin_percent": self.margin_percent,
            "shares_per_contract": self.shares_per_contract,
            "trade_date": self.trade_date,
            "stock_price": self.stock_price,
            "hsi": self.hsi,
        }

        result = {k: v for k, v in got.items() if v is not None}
        if self.notes:
            result["notes"] = self.notes

        return result


class TreeToEntry(Transformer):
    def entry(self, got):
        contract = None
        extras = {}
        notes = ""

        for g in got:
            if isinstance(g, ContractSpec):
                contract = g
            elif isinstance(g, TradeKind):
                kind = g
            elif isinstance(g, str):
                notes = g
            elif g[0] == "fill":
                _, contracts, premium = g
            else:
                extras[g[0]] = g[1]

        return TradeEntry(
            kind=kind,
            contracts=contracts,
            premium=premium,
            contract=contract,
            notes=notes,
            **extras,
        )

    @v_args(inline=True)
    def contract(self, side, optkind, symbol, strike, expiry):
        return ContractSpec(
            direction=side,
            kind=optkind,
            symbol=normalize_symbol(str(symbol)),
            strike=Decimal(str(strike)),
            expiry=datetime.date.fromisoformat(str(expiry)),
        )

    @v_args(inline=True)
    def side(self, got):
        return got

    def buy(self, _):
        return Direction.BUY

    def sell(self, _):
        return Direction.SELL

    @v_args(inline=True)
    def optkind(self, got):
        return got

    def call(self, _):
        return OptionKind.CALL

    def put(self, _):
        return OptionKind.PUT

    @v_args(inline=True)
    def action(self, got):
        return got

    def open(self, _):
        return TradeKind.OPEN

    def add(self, _):
        return TradeKind.ADD

    def reduce(self, _):
        return TradeKind.REDUCE

    def close(self, _):
        return TradeKind.CLOSE

    @v_args(inline=True)
    def fill(self, contracts, premium):
        return ("fill", int(contracts), Decimal(str(premium)))

    @v_args(inline=True)
    def extra(self, got):
        return got

    @v_args(inline=True)
    def fee(self, got):
        return ("fee", Decimal(str(got)))

    @v_args(inline=True)
    def margin(self, got):
        return ("margin_percent", Decimal(str(got)))

    @v_args(inline=True)
    def shares(self, got):
        return ("shares_per_contract", int(got))

    @v_args(inline=True)
    def on(self, got):
        return ("trade_date", datetime.date.fromisoformat(str(got)))

    @v_args(inline=True)
    def stock(self, got):
        return ("stock_price", Decimal(str(got)))

    @v_args(inline=True)
    def hsi(self, got):
        return ("hsi", Decimal(str(got)))

    @v_args(inline=True)
    def note(self, got):
        return str(got)[1:].strip()


@dataclass
class TradeLang:
    def __post_init__(self):
        self.parser = Lark(
            lang,
            start="entry",
            parser="lalr",
            lexer="contextual",
            transformer=TreeToEntry(),
        )

    def parse(self, text: str) -> TradeEntry:
        """Parse one trade line into a TradeEntry.

        On error, throws the raw lark exception (UnexpectedToken or
        UnexpectedCharacters) describing where parsing stopped."""
        return self.parser.parse(text.strip())
