import datetime
from decimal import Decimal

from optjournal.models import Position, Status
from optjournal.quotes import QuoteBook, live_premiums, market_code

EXPIRY = datetime.date(2024, 6, 27)


def pos(symbol="700", code="TCH240627P350000", status=Status.OPEN):
    return Position(
        "matt", symbol, "Sell", "Put", 350, EXPIRY, status=status, market_code=code
    )


def test_market_code():
    assert market_code(pos()) == "HK.TCH240627P350000"
    assert market_code(pos(code="HK.TCH240627P350000")) == "HK.TCH240627P350000"
    assert market_code(pos(symbol="AAPL.US", code="AAPL240627P150000")) == "US.AAPL240627P150000"
    assert market_code(pos(symbol="AAPL", code="AAPL240627P150000")) == "AAPL240627P150000"
    assert market_code(pos(code=None)) is None


def test_premium_is_cached():
    calls = []

    def fetch(code):
        calls.append(code)
        return 1.25

    book = QuoteBook(fetch, ttl=60)
    assert book.premium("HK.X") == Decimal("1.25")
    assert book.premium("HK.X") == Decimal("1.25")
    assert calls == ["HK.X"]

    book.clear()
    book.premium("HK.X")
    assert calls == ["HK.X", "HK.X"]


def test_failures_become_none():
    def broken(code):
        raise ConnectionError("feed down")

    assert QuoteBook(broken).premium("HK.X") is None
    assert QuoteBook(lambda c: None).premium("HK.X") is None
    assert QuoteBook(lambda c: "n/a").premium("HK.X") is None
    assert QuoteBook(lambda c: float("nan")).premium("HK.X") is None
    assert QuoteBook(lambda c: -1).premium("HK.X") is None
    assert QuoteBook(lambda c: 1).premium(None) is None


def test_failed_lookup_is_retried():
    answers = [None, "0.80"]
    book = QuoteBook(lambda c: answers.pop(0))

    assert book.premium("HK.X") is None
    assert book.premium("HK.X") == Decimal("0.80")


def test_live_premiums():
    running = pos()
    closed = pos(status=Status.CLOSED)
    nocode = pos(code=None)

    book = QuoteBook(lambda c: "0.5")
    assert live_premiums(book, [running, closed, nocode]) == {running.id: Decimal("0.5")}
