"""
指标计算与评分单元测试
"""

from datetime import datetime, timedelta

import pytest

from config import settings
from strategy_lab.domain.models import PerformanceMetrics, Trade
from strategy_lab.services.metrics_calculator import MetricsCalculator
from strategy_lab.services.objective import score


def make_trades(pnls):
    start = datetime(2024, 1, 2)
    return [
        Trade(
            entry_time=start + timedelta(hours=i),
            exit_time=start + timedelta(hours=i, minutes=30),
            side="long",
            entry_price=100.0,
            exit_price=100.0 + pnl / 100,
            quantity=100,
            pnl_cash=pnl,
            pnl_points=pnl / 100,
            fees=1.0,
            slippage=0.5,
            exit_reason="take_profit" if pnl > 0 else "stop_loss",
        )
        for i, pnl in enumerate(pnls)
    ]


class TestMetricsCalculator:
    """MetricsCalculator 测试类"""

    def test_zero_trades(self):
        """零交易时全部为 0"""
        assert MetricsCalculator.aggregate([]) == PerformanceMetrics()

    def test_profit_factor(self):
        metrics = MetricsCalculator.aggregate(make_trades([100, -50, 50, -25]))

        assert metrics.gross_profit == pytest.approx(150)
        assert metrics.gross_loss == pytest.approx(75)
        assert metrics.profit_factor == pytest.approx(2.0)
        assert metrics.net_pnl == pytest.approx(75)
        assert metrics.win_rate == pytest.approx(50.0)
        assert metrics.avg_trade == pytest.approx(18.75)

    def test_profit_factor_sentinel(self):
        """只有盈利交易时返回哨兵值"""
        metrics = MetricsCalculator.aggregate(make_trades([10, 20]))

        assert metrics.profit_factor == settings.PF_SENTINEL

    def test_profit_factor_all_losses(self):
        metrics = MetricsCalculator.aggregate(make_trades([-10, -20]))

        assert metrics.profit_factor == 0.0
        assert metrics.biggest_loss == pytest.approx(-20)

    def test_drawdown_monotonic_curve(self):
        """单调上升的权益曲线回撤为 0"""
        metrics = MetricsCalculator.aggregate(make_trades([10, 20, 30]))

        assert metrics.max_drawdown == 0.0

    def test_drawdown_fraction_of_peak(self):
        """回撤为峰值权益的比例"""
        metrics = MetricsCalculator.aggregate(make_trades([1000, -2200, 500]), initial_capital=10000)

        # 峰值 11000，谷底 8800
        assert metrics.max_drawdown == pytest.approx(0.2)

    def test_drawdown_from_initial_capital(self):
        """首笔亏损也计入回撤"""
        metrics = MetricsCalculator.aggregate(make_trades([-500]), initial_capital=10000)

        assert metrics.max_drawdown == pytest.approx(0.05)

    def test_drawdown_non_negative(self):
        metrics = MetricsCalculator.aggregate(make_trades([-1, 2, -3, 4, -5]))

        assert metrics.max_drawdown >= 0

    def test_lower_median(self):
        """偶数个交易取偏低的中位数"""
        metrics = MetricsCalculator.aggregate(make_trades([40, 10, 30, 20]))

        assert metrics.median_trade == 20

    def test_consecutive_losses(self):
        """零盈亏计为亏损"""
        metrics = MetricsCalculator.aggregate(make_trades([10, -1, 0, -2, 5, -3]))

        assert metrics.max_consecutive_losses == 3

    def test_costs_totals(self):
        metrics = MetricsCalculator.aggregate(make_trades([10, -10, 10]))

        assert metrics.fees_total == pytest.approx(3.0)
        assert metrics.slippage_total == pytest.approx(1.5)

    def test_biggest_loss_without_losses(self):
        assert MetricsCalculator.aggregate(make_trades([10, 20])).biggest_loss == 0.0

    def test_sharpe(self):
        assert MetricsCalculator.aggregate(make_trades([10])).sharpe == 0.0
        assert MetricsCalculator.aggregate(make_trades([10, 10])).sharpe == 0.0
        assert MetricsCalculator.aggregate(make_trades([10, 30])).sharpe == pytest.approx(20 / 14.1421356, rel=1e-6)


class TestObjective:
    """评分函数测试"""

    def test_zero_metrics(self):
        assert score(PerformanceMetrics()) == 0.0

    def test_caps(self):
        """各项归一化到上限"""
        metrics = PerformanceMetrics(profit_factor=999, net_pnl=1e9, sharpe=100, max_drawdown=0.0)

        assert score(metrics) == pytest.approx(0.35 + 0.25 + 0.25)

    def test_drawdown_penalty(self):
        base = PerformanceMetrics(profit_factor=2.0, net_pnl=500, sharpe=1.5)
        worse = PerformanceMetrics(profit_factor=2.0, net_pnl=500, sharpe=1.5, max_drawdown=0.1)

        assert score(base) - score(worse) == pytest.approx(0.15 * 0.5)

    def test_negative_return_clamped(self):
        metrics = PerformanceMetrics(profit_factor=0.5, net_pnl=-5000, sharpe=-2.0, max_drawdown=0.5)

        assert score(metrics) == pytest.approx(0.35 * 0.1 - 0.15)

    def test_custom_weights(self):
        metrics = PerformanceMetrics(profit_factor=5.0)

        assert score(metrics, {"pf_weight": 1.0, "return_weight": 0, "sharpe_weight": 0, "dd_penalty": 0}) == 1.0
