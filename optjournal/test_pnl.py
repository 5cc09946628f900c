import datetime
from decimal import Decimal

from optjournal.models import Direction, OptionKind, Position, Trade, TradeKind
from optjournal.pnl import (
    average_entry_premium,
    average_exit_premium,
    compute_option_pnl,
    compute_position_stats,
    net_contracts,
    sort_trades,
    total_closed,
    total_margin,
    total_opened,
)

D0 = datetime.datetime(2024, 3, 1, 10, 0, tzinfo=datetime.timezone.utc)
D1 = datetime.datetime(2024, 3, 8, 10, 0, tzinfo=datetime.timezone.utc)
D2 = datetime.datetime(2024, 3, 15, 10, 0, tzinfo=datetime.timezone.utc)
EXPIRY = datetime.date(2024, 6, 27)


def pos(direction=Direction.SELL, strike=350):
    return Position(
        owner="matt",
        symbol="700",
        direction=direction,
        kind=OptionKind.PUT,
        strike=strike,
        expiry=EXPIRY,
    )


def trade(kind, contracts, premium, when=D0, **kw):
    return Trade(
        position_id="p",
        kind=kind,
        contracts=contracts,
        premium=Decimal(str(premium)),
        trade_date=when,
        **kw,
    )


def test_short_round_trip():
    p = pos()
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0),
        trade(TradeKind.CLOSE, 10, "0.5", D1),
    ]

    got = compute_option_pnl(p, trades)
    assert got.realized_pnl == Decimal("7500")
    assert got.net_contracts == 0
    assert got.net_pnl == Decimal("7500")
    assert got.avg_entry_premium == 0
    assert got.avg_exit_premium == Decimal("0.5")
    assert got.total_opened == 10
    assert got.total_closed == 10


def test_long_unrealized():
    p = pos(Direction.BUY)
    trades = [trade(TradeKind.OPEN, 4, "1.0")]

    got = compute_option_pnl(p, trades, Decimal("1.5"))
    assert got.unrealized_pnl == Decimal("1000")
    assert got.realized_pnl == 0
    assert got.market_value == Decimal("3000")
    assert got.gross_pnl == Decimal("1000")

    # premium paid was 1.0 * 4 * 500 = 2000
    assert got.return_percentage == Decimal("50")


def test_short_unrealized_loss():
    p = pos()
    trades = [trade(TradeKind.OPEN, 2, "3.0")]

    got = compute_option_pnl(p, trades, "4.0")
    assert got.unrealized_pnl == Decimal("-1000")


def test_average_cost_resets_when_flat():
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0),
        trade(TradeKind.CLOSE, 10, "1.0", D1),
        trade(TradeKind.OPEN, 5, "3.0", D2),
    ]

    stats = compute_position_stats(trades, Direction.SELL)
    assert stats.avg_cost == Decimal("3.0")
    assert stats.net_contracts == 5
    assert stats.realized_pnl == Decimal("5000")

    assert compute_option_pnl(pos(), trades).avg_entry_premium == Decimal("3.0")


def test_weighted_average_entry():
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0),
        trade(TradeKind.ADD, 10, "4.0", D1),
    ]

    assert average_entry_premium(trades) == Decimal("3.0")


def test_partial_reduce_keeps_average():
    p = pos()
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0),
        trade(TradeKind.REDUCE, 4, "1.0", D1),
    ]

    got = compute_option_pnl(p, trades)
    assert got.avg_entry_premium == Decimal("2.0")
    assert got.net_contracts == 6
    assert got.realized_pnl == Decimal("2000")


def test_replay_sorts_out_of_order_input():
    trades = [
        trade(TradeKind.CLOSE, 10, "1.0", D1),
        trade(TradeKind.OPEN, 10, "2.0", D0),
    ]

    stats = compute_position_stats(trades, "Sell")
    assert stats.realized_pnl == Decimal("5000")
    assert stats.net_contracts == 0


def test_same_day_ordered_by_created_at():
    first = trade(TradeKind.OPEN, 5, "2.0", D0, created_at=D0)
    second = trade(
        TradeKind.REDUCE, 5, "1.0", D0, created_at=D0 + datetime.timedelta(seconds=1)
    )

    assert sort_trades([second, first]) == [first, second]

    stats = compute_position_stats([second, first], Direction.SELL)
    assert stats.realized_pnl == Decimal("2500")


def test_conservation_and_non_negative_prefix():
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0),
        trade(TradeKind.ADD, 5, "2.5", D1),
        trade(TradeKind.REDUCE, 8, "1.0", D2),
    ]

    assert net_contracts(trades) == total_opened(trades) - total_closed(trades) == 7

    running = 0
    for t in sort_trades(trades):
        running += t.contracts if t.is_opening else -t.contracts
        assert running >= 0


def test_over_close_is_clamped():
    trades = [
        {"kind": "OPEN", "contracts": 3, "premium": "2.0", "trade_date": "2024-03-01"},
        {"kind": "CLOSE", "contracts": 5, "premium": "1.0", "trade_date": "2024-03-02"},
    ]

    stats = compute_position_stats(trades, "sell")
    assert stats.net_contracts == 0
    assert stats.realized_pnl == Decimal("1500")


def test_idempotent():
    p = pos()
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0, fee=Decimal("12.5")),
        trade(TradeKind.REDUCE, 3, "0.8", D1, fee=Decimal("4")),
    ]

    assert compute_option_pnl(p, trades, "1.1") == compute_option_pnl(p, trades, "1.1")


def test_no_price_means_no_unrealized():
    p = pos(Direction.BUY)
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0),
        trade(TradeKind.REDUCE, 3, "2.5", D1),
    ]

    got = compute_option_pnl(p, trades)
    assert got.unrealized_pnl == 0
    assert got.market_value == 0


def test_fees_reduce_net():
    p = pos()
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0, fee=Decimal("50")),
        trade(TradeKind.CLOSE, 10, "0.5", D1, fee=Decimal("30")),
    ]

    got = compute_option_pnl(p, trades)
    assert got.total_fees == Decimal("80")
    assert got.gross_pnl == Decimal("7500")
    assert got.net_pnl == Decimal("7420")


def test_margin_and_short_return():
    p = pos(strike=100)
    trades = [
        trade(TradeKind.OPEN, 10, "2.0", D0, margin_percent=Decimal("20")),
        trade(TradeKind.ADD, 10, "2.0", D1, margin_percent=Decimal("10")),
        trade(TradeKind.REDUCE, 10, "1.0", D2),
    ]

    # 10 open * 500 shares * 100 strike * 15% weighted margin
    assert total_margin(p, trades) == Decimal("75000")

    got = compute_option_pnl(p, trades)
    assert got.total_margin == Decimal("75000")
    assert got.realized_pnl == Decimal("5000")
    assert round(got.return_percentage, 4) == Decimal("6.6667")


def test_short_return_without_margin_uses_notional():
    p = pos(strike=100)
    trades = [
        trade(TradeKind.OPEN, 2, "2.0", D0),
        trade(TradeKind.CLOSE, 2, "1.0", D1),
    ]

    got = compute_option_pnl(p, trades)
    assert got.total_margin == 0

    # 1000 realized over 100 * 2 * 500
    assert got.return_percentage == Decimal("1")


def test_empty_history():
    got = compute_option_pnl(pos(), [], "1.0")
    assert got.net_contracts == 0
    assert got.unrealized_pnl == 0
    assert got.return_percentage == 0
    assert got.avg_exit_premium == 0


def test_junk_numbers_count_as_zero():
    trades = [
        {"kind": "OPEN", "contracts": "4", "premium": "abc", "fee": None},
        {"kind": "OPEN", "contracts": None, "premium": "1.0"},
        {"kind": "EXPIRE", "contracts": 9, "premium": "1.0"},
    ]

    assert net_contracts(trades) == 4
    assert average_exit_premium(trades) == 0
    assert compute_option_pnl({"direction": "Buy", "strike": "x"}, trades).total_fees == 0


def test_shares_from_first_trade():
    p = pos(Direction.BUY)
    trades = [
        trade(TradeKind.OPEN, 2, "1.0", D0, shares_per_contract=100),
        trade(TradeKind.ADD, 2, "1.0", D1, shares_per_contract=1000),
    ]

    assert compute_option_pnl(p, trades, "2.0").market_value == Decimal("800")
