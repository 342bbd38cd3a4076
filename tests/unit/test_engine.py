"""
执行模拟器单元测试
"""

from collections import Counter
from datetime import timedelta

import pytest

from config import settings
from config.validator import CostModel
from strategy_lab.engine import apply_data_perturbation, run_backtest, simulate

VARIANT = "momentum_breakout_v1"


class TestSimulate:
    """simulate 测试类"""

    def test_breakout_scenario(self, breakout_bars):
        """横盘后上涨：全部止盈，盈亏比为哨兵值"""
        trades, metrics = run_backtest(breakout_bars, {}, VARIANT, CostModel())

        assert len(trades) == settings.DEFAULT_MAX_TRADES_PER_DAY
        assert all(t.side == "long" for t in trades)
        assert all(t.exit_reason == "take_profit" for t in trades)
        assert metrics.profit_factor == settings.PF_SENTINEL
        assert metrics.max_drawdown < metrics.gross_profit
        assert metrics.net_pnl > 0

    def test_first_entry_after_warmup(self, breakout_bars):
        """首次入场在预热期之后（max(lookback, atr_period)+1）"""
        trades = simulate(breakout_bars, {"lookback_bars": 40, "atr_period": 14}, VARIANT)

        assert trades[0].entry_time == breakout_bars.timestamps[41]

    def test_deterministic(self, breakout_bars):
        """相同输入产生相同交易"""
        first = simulate(breakout_bars, {}, VARIANT, CostModel())
        second = simulate(breakout_bars, {}, VARIANT, CostModel())

        assert first == second

    def test_commission_monotonic(self, breakout_bars):
        """佣金增加时净盈亏单调下降"""
        cheap = run_backtest(breakout_bars, {}, VARIANT, {"commission_per_unit": 0.01})[1]
        expensive = run_backtest(breakout_bars, {}, VARIANT, {"commission_per_unit": 0.05})[1]

        assert expensive.trade_count == cheap.trade_count
        assert expensive.net_pnl < cheap.net_pnl
        assert expensive.fees_total > cheap.fees_total

    def test_cost_breakdown(self, breakout_bars):
        """单笔成本 = 佣金*数量 + 固定费用 + 额外费用；滑点含基点部分"""
        cost = {"commission_per_unit": 0.02, "slippage_per_unit": 0.01, "fixed_cost_per_trade": 2.0}
        trades = simulate(
            breakout_bars, {}, VARIANT, cost,
            extra_cost_perturbation={"extra_fee": 1.0, "extra_slippage_bps": 3.0}
        )
        qty = settings.DEFAULT_QUANTITY

        for t in trades:
            assert t.fees == pytest.approx(0.02 * qty + 2.0 + 1.0)
            assert t.slippage == pytest.approx(0.01 * qty + 3.0 / 10000 * t.entry_price * qty)
            assert t.pnl_cash == pytest.approx(t.pnl_points * qty - t.fees - t.slippage)

    def test_stop_loss(self, bar_factory):
        """价格反向下跌触发止损"""
        bars = bar_factory([100.0] * 60 + [99.0 - k for k in range(20)])
        trades = simulate(bars, {}, VARIANT, CostModel())

        assert trades[0].side == "long"
        assert trades[0].exit_reason == "stop_loss"
        assert trades[0].pnl_points == pytest.approx(-1.0)

    def test_end_of_data(self, bar_factory):
        """数据结束时强制平仓"""
        bars = bar_factory([100.0] * 60)
        trades = simulate(bars, {}, VARIANT, CostModel())

        assert len(trades) == 1
        assert trades[0].exit_reason == "end_of_data"
        assert trades[0].exit_time == bars.timestamps[-1]
        assert trades[0].pnl_points == 0

    def test_zero_atr_skips(self, bar_factory):
        """ATR 为 0 时不入场"""
        bars = bar_factory([100.0] * 80, spread=0.0)

        assert simulate(bars, {}, VARIANT) == []

    def test_too_few_bars(self, bar_factory):
        bars = bar_factory([100.0] * 30)

        assert simulate(bars, {}, VARIANT) == []

    def test_daily_cap_single_day(self, breakout_bars):
        """同一天内入场次数受上限限制"""
        trades = simulate(breakout_bars, {"max_trades_per_day": 1}, VARIANT)

        assert len(trades) == 1

    def test_daily_cap_resets_per_day(self, bar_factory):
        """日期变化后重新计数"""
        bars = bar_factory(
            [100.0] * 100 + [100.0 + 0.5 * (k + 1) for k in range(100)], step=timedelta(hours=1)
        )
        trades = simulate(bars, {"max_trades_per_day": 1}, VARIANT)
        per_day = Counter(t.entry_time.date() for t in trades)

        assert len(trades) > 1
        assert max(per_day.values()) == 1

    def test_direction_filter(self, breakout_bars):
        """只做空时屏蔽多头信号"""
        assert simulate(breakout_bars, {"trade_direction": "short"}, VARIANT) == []
        assert all(t.side == "long" for t in simulate(breakout_bars, {"trade_direction": "long"}, VARIANT))

    def test_unknown_params_ignored(self, breakout_bars):
        plain = simulate(breakout_bars, {}, VARIANT)
        extra = simulate(breakout_bars, {"not_a_param": 123}, VARIANT)

        assert plain == extra


class TestDataPerturbation:
    """删除K线扰动测试"""

    def test_removes_indices(self, breakout_bars):
        reduced = apply_data_perturbation(breakout_bars, {"removed_indices": [0, 5, 10]})

        assert len(reduced) == len(breakout_bars) - 3
        assert reduced.timestamps[0] == breakout_bars.timestamps[1]

    def test_none_returns_same(self, breakout_bars):
        assert apply_data_perturbation(breakout_bars, None) is breakout_bars
