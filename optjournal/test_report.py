import datetime
from decimal import Decimal

from optjournal.models import Position, Status
from optjournal.report import hkd, percent, portfolio_report, position_table, signed_hkd
from optjournal.stats import summarize

EXPIRY = datetime.date(2024, 6, 27)


def test_money():
    assert hkd(Decimal("1234.5")) == "HK$1,234.50"
    assert hkd(-7500) == "-HK$7,500.00"
    assert hkd(None) == "HK$0.00"
    assert signed_hkd(3) == "+HK$3.00"
    assert signed_hkd(-3) == "-HK$3.00"
    assert signed_hkd(0) == "HK$0.00"
    assert percent(Decimal("6.66666")) == "6.67%"


def test_position_table():
    p = Position("matt", "700", "Sell", "Put", 350, EXPIRY, status=Status.CLOSED)
    trades = [
        {"kind": "OPEN", "contracts": 10, "premium": "2.0", "trade_date": "2024-03-01"},
        {"kind": "CLOSE", "contracts": 10, "premium": "0.5", "trade_date": "2024-03-08"},
    ]

    table = position_table([(p, trades)])
    lines = table.splitlines()

    assert len(lines) == 5
    assert lines[0] == lines[2] == lines[4]
    assert "Net PNL" in lines[1]
    assert "00700.HK Sell Put HKD 350.00 2024-06-27" in lines[3]
    assert "+HK$7,500.00" in lines[3]
    assert "Closed" in lines[3]

    # every row is the same width
    assert len({len(x) for x in lines}) == 1


def test_empty_table():
    assert position_table([]) == "No positions found."


def test_portfolio_report():
    p = Position("matt", "700", "Sell", "Put", 350, EXPIRY, status=Status.CLOSED)
    trades = [
        {"kind": "OPEN", "contracts": 10, "premium": "2.0", "trade_date": "2024-03-01"},
        {"kind": "CLOSE", "contracts": 10, "premium": "0.5", "trade_date": "2024-03-08"},
    ]

    text = portfolio_report(summarize([(p, trades)], on=datetime.date(2024, 4, 1)))

    assert text.startswith("PORTFOLIO SUMMARY")
    assert "  Win Rate: 100.00%" in text
    assert "  Net: +HK$7,500.00" in text
    assert "  Avg Hold: 7.0 days" in text
