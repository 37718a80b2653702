"""Tests for reconciliation.summary."""
import math

import pytest

from helpers import BONK, FIXED_NOW
from reconciliation.summary import (
    max_drawdown,
    performance_metrics,
    sharpe_ratio,
    sortino_ratio,
    summarize,
)
from shared.schemas import LegStatus, TradeKind, UnifiedTrade


def _trade(id, pnl, kind=TradeKind.CLOSED, ts=FIXED_NOW, token="BONK", **kw):
    return UnifiedTrade(
        id=id, kind=kind, status=LegStatus.CLOSED, agent_id="a", token_symbol=token,
        pnl=pnl, timestamp=ts, **kw,
    )


def test_summary_excludes_unrealized_pnl():
    trades = [
        _trade("w1", 10.0),
        _trade("w2", 5.0, token="WIF"),
        _trade("l1", -3.0),
        _trade("o1", 100.0, kind=TradeKind.OPEN, unrealized=True, token="POPCAT"),
        _trade("f1", 0.0, kind=TradeKind.FAILED),
        _trade("x1", 2.0, kind=TradeKind.ORPHAN_EXIT),
    ]
    summary = summarize(trades)
    assert summary.total_trades == 6
    assert summary.total_pnl == pytest.approx(14.0)
    assert summary.wins == 3
    assert summary.losses == 1
    assert summary.win_rate == 50.0
    assert summary.unrealized_pnl == 100.0
    assert summary.open_trades == 1
    assert summary.failed_trades == 1
    assert summary.unique_token_count == 3
    assert summary.tokens == ["BONK", "WIF", "POPCAT"]


def test_win_rate_rounds_to_two_places():
    trades = [_trade("a", 1.0), _trade("b", 1.0), _trade("c", -1.0)]
    assert summarize(trades).win_rate == 66.67


def test_breakeven_trades_count_against_win_rate():
    summary = summarize([_trade("w", 1.0), _trade("even", 0.0)])
    assert summary.wins == 1
    assert summary.losses == 0
    assert summary.win_rate == 50.0


def test_total_pnl_rounds_to_two_places():
    trades = [_trade("a", 0.1), _trade("b", 0.2), _trade("c", 0.004)]
    assert summarize(trades).total_pnl == 0.3


def test_empty_summary():
    summary = summarize([])
    assert summary.total_trades == 0
    assert summary.win_rate == 0.0
    assert summary.tokens == []


def test_unknown_symbols_are_told_apart_by_address():
    trades = [
        _trade("a", 1.0, token="UNKNOWN", token_address=BONK),
        _trade("b", 1.0, token="UNKNOWN", token_address="other-mint"),
    ]
    summary = summarize(trades)
    assert summary.unique_token_count == 2
    assert summary.tokens == [BONK, "other-mint"]


def test_performance_metrics():
    trades = [
        _trade("a", 100.0, ts=FIXED_NOW, fees=1.0),
        _trade("b", -50.0, ts=FIXED_NOW + 1, fees=0.5),
        _trade("c", -30.0, ts=FIXED_NOW + 2),
        _trade("d", 40.0, ts=FIXED_NOW + 3),
        _trade("open", 500.0, kind=TradeKind.OPEN, unrealized=True),
    ]
    metrics = performance_metrics(trades, starting_balance=700.0)
    assert metrics.profit_factor == pytest.approx(140.0 / 80.0)
    assert metrics.avg_win == pytest.approx(70.0)
    assert metrics.avg_loss == pytest.approx(40.0)
    assert metrics.largest_win == 100.0
    assert metrics.largest_loss == -50.0
    assert metrics.total_fees == pytest.approx(1.5)
    assert metrics.max_drawdown == pytest.approx(80.0)
    assert metrics.max_drawdown_percent == pytest.approx(80.0 / 800.0 * 100)
    assert metrics.ending_balance == pytest.approx(760.0)


def test_profit_factor_without_losses():
    assert performance_metrics([_trade("a", 5.0)]).profit_factor == 999.0
    assert performance_metrics([]).ending_balance == 700.0


def test_max_drawdown_is_chronological():
    trades = [_trade("late", 10.0, ts=FIXED_NOW + 1), _trade("early", -10.0, ts=FIXED_NOW)]
    assert max_drawdown(trades, 100.0) == pytest.approx((10.0, 10.0))


def test_sharpe_and_sortino_ratios():
    trades = [_trade("a", 1.0, pnl_percent=10.0), _trade("b", -1.0, pnl_percent=-10.0)]
    assert sharpe_ratio(trades) == pytest.approx(-0.04 / (0.1 * math.sqrt(365)))
    assert sortino_ratio(trades) == pytest.approx(-0.04 / (math.sqrt(0.005) * math.sqrt(365)))

    metrics = performance_metrics(trades)
    assert metrics.sharpe_ratio == pytest.approx(sharpe_ratio(trades))
    assert metrics.sortino_ratio == pytest.approx(sortino_ratio(trades))


def test_ratios_with_too_few_trades_or_no_spread():
    assert sharpe_ratio([_trade("a", 1.0, pnl_percent=10.0)]) == 0.0
    assert sortino_ratio([_trade("a", 1.0, pnl_percent=10.0)]) == 0.0
    same = [_trade("a", 1.0, pnl_percent=5.0), _trade("b", 1.0, pnl_percent=5.0)]
    assert sharpe_ratio(same) == 0.0
    assert sortino_ratio(same) == 999.0
