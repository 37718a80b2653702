"""Headline statistics over unified trades."""
import logging
import math
from typing import Iterable

from normalizer.trade_normalizer import PLACEHOLDER_TOKEN
from shared.schemas import PerformanceMetrics, TradeKind, TradeSummary, UnifiedTrade

logger = logging.getLogger(__name__)

MAX_LISTED_TOKENS = 10
# Reported when there are wins but no losses to divide by
NO_LOSS_PROFIT_FACTOR = 999.0
# Reported when no trade lost money
NO_DOWNSIDE_SORTINO = 999.0
RISK_FREE_RATE = 0.04
PERIODS_PER_YEAR = 365


def realized(trades: Iterable[UnifiedTrade]) -> list[UnifiedTrade]:
    """Trades whose P&L counts: closed and orphan exits, never open ones."""
    return [
        t for t in trades
        if not t.unrealized and t.kind in (TradeKind.CLOSED, TradeKind.ORPHAN_EXIT)
    ]


def summarize(trades: Iterable[UnifiedTrade]) -> TradeSummary:
    """Totals, win rate and token spread.

    Unrealized P&L of open trades is reported on its own and never enters
    ``total_pnl``, ``wins`` or ``losses``. ``win_rate`` is wins over all
    trades, so breakeven, open and failed trades count against it.
    """
    trades = list(trades)
    closed = realized(trades)
    wins = sum(1 for t in closed if t.pnl > 0)
    losses = sum(1 for t in closed if t.pnl < 0)

    labels: dict[str, str] = {}
    for trade in trades:
        label = trade.token_symbol
        if label == PLACEHOLDER_TOKEN and trade.token_address:
            label = trade.token_address
        labels.setdefault(trade.token_key, label)

    return TradeSummary(
        total_trades=len(trades),
        total_pnl=round(sum(t.pnl for t in closed), 2),
        wins=wins,
        losses=losses,
        win_rate=round(wins / len(trades) * 100, 2) if trades else 0.0,
        unique_token_count=len(labels),
        open_trades=sum(1 for t in trades if t.kind == TradeKind.OPEN),
        failed_trades=sum(1 for t in trades if t.kind == TradeKind.FAILED),
        unrealized_pnl=sum(t.pnl for t in trades if t.unrealized),
        tokens=list(labels.values())[:MAX_LISTED_TOKENS],
    )


def max_drawdown(
    trades: Iterable[UnifiedTrade], starting_balance: float
) -> tuple[float, float]:
    """Largest peak-to-trough fall of the running balance, oldest trade first."""
    peak = balance = starting_balance
    worst = worst_percent = 0.0
    for trade in sorted(trades, key=lambda t: t.exit_time or t.timestamp):
        balance += trade.pnl
        peak = max(peak, balance)
        drawdown = peak - balance
        if drawdown > worst:
            worst = drawdown
            worst_percent = drawdown / peak * 100 if peak > 0 else 0.0
    return worst, worst_percent


def _returns(trades: Iterable[UnifiedTrade]) -> list[float]:
    return [t.pnl_percent / 100 for t in trades]


def sharpe_ratio(
    trades: Iterable[UnifiedTrade], risk_free_rate: float = RISK_FREE_RATE
) -> float:
    """Annualized Sharpe ratio of per-trade percent returns.

    Each trade counts as one period; fewer than two trades give 0.
    """
    returns = _returns(trades)
    if len(returns) < 2:
        return 0.0
    mean = sum(returns) / len(returns)
    std = math.sqrt(sum((r - mean) ** 2 for r in returns) / len(returns))
    if std == 0:
        return 0.0
    return (mean * PERIODS_PER_YEAR - risk_free_rate) / (std * math.sqrt(PERIODS_PER_YEAR))


def sortino_ratio(
    trades: Iterable[UnifiedTrade], risk_free_rate: float = RISK_FREE_RATE
) -> float:
    """Like sharpe_ratio, but only losing returns make up the deviation."""
    returns = _returns(trades)
    if len(returns) < 2:
        return 0.0
    downside = [r for r in returns if r < 0]
    if not downside:
        return NO_DOWNSIDE_SORTINO
    mean = sum(returns) / len(returns)
    deviation = math.sqrt(sum(r ** 2 for r in downside) / len(returns))
    return (mean * PERIODS_PER_YEAR - risk_free_rate) / (deviation * math.sqrt(PERIODS_PER_YEAR))


def performance_metrics(
    trades: Iterable[UnifiedTrade], starting_balance: float = 700.0
) -> PerformanceMetrics:
    closed = realized(trades)
    if not closed:
        return PerformanceMetrics(ending_balance=starting_balance)

    win_pnls = [t.pnl for t in closed if t.pnl > 0]
    loss_pnls = [t.pnl for t in closed if t.pnl < 0]
    total_wins = sum(win_pnls)
    total_losses = abs(sum(loss_pnls))

    if total_losses > 0:
        profit_factor = total_wins / total_losses
    else:
        profit_factor = NO_LOSS_PROFIT_FACTOR if total_wins > 0 else 0.0

    drawdown, drawdown_percent = max_drawdown(closed, starting_balance)
    metrics = PerformanceMetrics(
        profit_factor=profit_factor,
        avg_win=total_wins / len(win_pnls) if win_pnls else 0.0,
        avg_loss=total_losses / len(loss_pnls) if loss_pnls else 0.0,
        largest_win=max(win_pnls, default=0.0),
        largest_loss=min(loss_pnls, default=0.0),
        total_fees=sum(t.fees for t in closed),
        max_drawdown=drawdown,
        max_drawdown_percent=drawdown_percent,
        ending_balance=starting_balance + sum(t.pnl for t in closed),
        sharpe_ratio=sharpe_ratio(closed),
        sortino_ratio=sortino_ratio(closed),
    )
    logger.debug(
        "Performance metrics computed",
        extra={"trades": len(closed), "profit_factor": metrics.profit_factor},
    )
    return metrics
