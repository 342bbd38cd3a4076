"""
指标计算模块 - 把交易序列归约为绩效指标
"""
import numpy as np
from typing import Sequence

from config import settings
from strategy_lab.domain.models import PerformanceMetrics, Trade


class MetricsCalculator:
    """回测指标计算器"""

    @staticmethod
    def aggregate(
        trades: Sequence[Trade],
        initial_capital: float = None
    ) -> PerformanceMetrics:
        """
        计算所有回测指标

        Args:
            trades: 按时间顺序的已平仓交易
            initial_capital: 权益曲线起点（默认 INITIAL_CAPITAL）

        Returns:
            PerformanceMetrics（零交易时全部为 0）
        """
        if not trades:
            return PerformanceMetrics()

        capital = settings.INITIAL_CAPITAL if initial_capital is None else initial_capital
        pnls = np.array([t.pnl_cash for t in trades], dtype=float)
        trade_count = len(pnls)

        wins = pnls[pnls > 0]
        losses = pnls[pnls <= 0]
        gross_profit = float(wins.sum())
        gross_loss = float(abs(losses.sum()))
        net_pnl = float(pnls.sum())

        return PerformanceMetrics(
            profit_factor=MetricsCalculator._profit_factor(gross_profit, gross_loss),
            net_pnl=net_pnl,
            gross_profit=gross_profit,
            gross_loss=gross_loss,
            max_drawdown=MetricsCalculator._calculate_max_drawdown(pnls, capital),
            trade_count=trade_count,
            win_rate=len(wins) / trade_count * 100,
            avg_trade=net_pnl / trade_count,
            median_trade=MetricsCalculator._lower_median(pnls),
            fees_total=float(sum(t.fees for t in trades)),
            slippage_total=float(sum(t.slippage for t in trades)),
            max_consecutive_losses=MetricsCalculator._max_consecutive_losses(pnls),
            biggest_loss=min(0.0, float(pnls.min())),
            sharpe=MetricsCalculator._calculate_sharpe(pnls),
        )

    @staticmethod
    def _profit_factor(gross_profit: float, gross_loss: float) -> float:
        """盈亏比；无亏损时有盈利返回哨兵值，否则为 0"""
        if gross_loss > 0:
            return gross_profit / gross_loss
        return settings.PF_SENTINEL if gross_profit > 0 else 0.0

    @staticmethod
    def _calculate_max_drawdown(pnls: np.ndarray, initial_capital: float) -> float:
        """计算最大回撤（相对峰值权益的比例，非负）"""
        equity = initial_capital + np.concatenate(([0.0], np.cumsum(pnls)))
        running_max = np.maximum.accumulate(equity)
        gap = running_max - equity
        drawdown = np.divide(gap, running_max, out=np.zeros_like(gap), where=running_max > 0)
        return max(0.0, float(np.max(drawdown)))

    @staticmethod
    def _lower_median(pnls: np.ndarray) -> float:
        ordered = np.sort(pnls)
        return float(ordered[(len(ordered) - 1) // 2])

    @staticmethod
    def _max_consecutive_losses(pnls: np.ndarray) -> int:
        longest = current = 0
        for pnl in pnls:
            if pnl <= 0:
                current += 1
                longest = max(longest, current)
            else:
                current = 0
        return longest

    @staticmethod
    def _calculate_sharpe(pnls: np.ndarray) -> float:
        """单笔收益夏普代理：均值 / 样本标准差（不年化）"""
        if len(pnls) < 2:
            return 0.0
        std = np.std(pnls, ddof=1)
        if std == 0:
            return 0.0
        return float(np.mean(pnls) / std)

