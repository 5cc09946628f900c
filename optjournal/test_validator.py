import datetime

import pytest

from optjournal.models import InvalidTransition, Status, TradeKind
from optjournal.validator import Verdict, check_trade, history_errors, validate_trade


def position(status=Status.OPEN):
    return {"status": status, "direction": "Sell"}


def t(kind, contracts, day=1, **kw):
    return {
        "kind": kind,
        "contracts": contracts,
        "premium": "1.0",
        "trade_date": datetime.date(2024, 3, day),
        **kw,
    }


OPEN5 = [t("OPEN", 5)]


def test_over_close_names_open_count():
    got = validate_trade(position(), OPEN5, {"kind": "REDUCE", "contracts": 10})
    assert not got.valid
    assert "5" in got.reason
    assert got.reason == "cannot close 10 contracts: only 5 open"


def test_close_without_position():
    got = validate_trade(position(), [], {"kind": TradeKind.CLOSE, "contracts": 1})
    assert not got.valid
    assert "no position exists" in got.reason


def test_open_twice():
    got = validate_trade(position(), OPEN5, {"kind": "OPEN", "contracts": 1})
    assert got == Verdict(False, "cannot OPEN: position already exists")


def test_close_must_be_exact():
    got = validate_trade(position(), OPEN5, {"kind": "CLOSE", "contracts": 3})
    assert got.reason == "CLOSE must close all 5 contracts"

    assert validate_trade(position(), OPEN5, {"kind": "CLOSE", "contracts": 5})
    assert validate_trade(position(), OPEN5, {"kind": "REDUCE", "contracts": 3})


def test_closed_position_rejects_everything():
    got = validate_trade(position(Status.CLOSED), OPEN5, {"kind": "ADD", "contracts": 1})
    assert got.reason == "cannot add trades to a closed position"


def test_rule_order_over_close_before_status():
    got = validate_trade(position(Status.CLOSED), OPEN5, {"kind": "REDUCE", "contracts": 9})
    assert got.reason.startswith("cannot close 9 contracts")


def test_expired_flat_rejected_expired_open_accepted():
    flat = [t("OPEN", 5, 1), t("CLOSE", 5, 2)]
    got = validate_trade(position(Status.EXPIRED), flat, {"kind": "ADD", "contracts": 1})
    assert got.reason == "cannot add trades to an expired option with zero net position"

    assert validate_trade(position(Status.EXPIRED), OPEN5, {"kind": "CLOSE", "contracts": 5})


def test_add_and_open_accepted():
    assert validate_trade(position(), [], {"kind": "OPEN", "contracts": 5}) == Verdict(True)
    assert validate_trade(position(), OPEN5, {"kind": "ADD", "contracts": 50}).valid


def test_unknown_kind():
    got = validate_trade(position(), OPEN5, {"kind": "EXPIRE", "contracts": 1})
    assert not got.valid
    assert "unknown trade kind" in got.reason


def test_check_trade_raises():
    with pytest.raises(InvalidTransition, match="only 5 open"):
        check_trade(position(), OPEN5, {"kind": "CLOSE", "contracts": 6})

    check_trade(position(), OPEN5, {"kind": "REDUCE", "contracts": 5})


def test_history_errors():
    assert history_errors([t("OPEN", 5, 1), t("REDUCE", 2, 2), t("CLOSE", 3, 3)]) == []

    # sorted by date: the close lands before the open
    got = history_errors([t("OPEN", 5, 2), t("REDUCE", 2, 1)])
    assert len(got) == 1
    assert "closes 2 contracts with only 0 open" in got[0]

    got = history_errors([t("OPEN", 0, 1, id="a"), t("ADD", 1, 2, fee="-3", id="b")])
    assert got == [
        "trade a: contracts must be positive (got 0)",
        "trade b: fee is negative",
    ]


def test_status_read_in_any_case():
    for status in ("closed", "CLOSED", "Closed"):
        got = validate_trade(position(status), OPEN5, {"kind": "ADD", "contracts": 1})
        assert got.reason == "cannot add trades to a closed position"

    flat = [t("OPEN", 5, 1), t("CLOSE", 5, 2)]
    got = validate_trade(position("expired"), flat, {"kind": "ADD", "contracts": 1})
    assert got.reason == "cannot add trades to an expired option with zero net position"
