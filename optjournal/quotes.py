"""Live option premiums from any market-data source.

The journal never speaks a market-data wire protocol. Callers hand QuoteBook a
plain callable taking a market code ('HK.TCH240627C350000') and returning a
per-share price (or None), and QuoteBook takes care of caching and of
turning every kind of failure into "no price".

No price simply means a snapshot without unrealized PNL, so a broken data
feed degrades the numbers instead of breaking the journal.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from cachetools import TTLCache
from loguru import logger

from . import numeric
from .config import QUOTE_TTL
from .models import Status

Fetcher = Callable[[str], Any]


def market_code(position: Any) -> str | None:
    """Return the position's market code with a market prefix ('HK.' / 'US.').

    Codes already carrying a prefix pass through. HK is assumed for numeric or
    '.HK' symbols, US for '.US' symbols; otherwise the code is left alone."""
    code = numeric.field(position, "market_code")
    if not code:
        return None

    code = str(code).strip()
    if "." in code:
        return code

    symbol = str(numeric.field(position, "symbol") or "").upper()
    if "HK" in symbol or symbol.isdigit():
        return f"HK.{code}"

    if "US" in symbol:
        return f"US.{code}"

    return code


@dataclass(slots=True)
class QuoteBook:
    fetcher: Fetcher
    ttl: float = QUOTE_TTL
    maxsize: int = 1024

    cache: TTLCache = field(init=False)

    def __post_init__(self):
        self.cache = TTLCache(maxsize=self.maxsize, ttl=self.ttl)

    def premium(self, code: str | None) -> Decimal | None:
        """Current per-share premium for 'code', or None when unavailable.

        Only usable prices are cached so a failed lookup is retried next time."""
        if not code:
            return None

        if (got := self.cache.get(code)) is not None:
            return got

        try:
            raw = self.fetcher(code)
        except Exception as e:
            logger.warning("[{}] Quote lookup failed: {}", code, e)
            return None

        if raw is None:
            return None

        price = numeric.num(raw)
        if price <= 0:
            logger.warning("[{}] Ignoring unusable quote: {!r}", code, raw)
            return None

        self.cache[code] = price
        return price

    def clear(self) -> None:
        self.cache.clear()


def live_premiums(book: QuoteBook, positions: Iterable[Any]) -> dict[str, Decimal]:
    """Map position id to current premium for open positions with a known market code."""
    result = {}
    for p in positions:
        if Status.parse(numeric.field(p, "status")) != Status.OPEN:
            continue

        if (price := book.premium(market_code(p))) is not None:
            result[numeric.field(p, "id")] = price

    return result
