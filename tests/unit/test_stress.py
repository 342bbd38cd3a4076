"""
压力测试单元测试
"""

import pytest

from config.validator import StressThresholds
from strategy_lab.domain.errors import InsufficientDataError
from strategy_lab.domain.models import PerformanceMetrics
from strategy_lab.services.stress_service import (
    build_scenarios,
    certify,
    evaluate_checks,
    gap_indices,
    run_stress_test,
)

BASELINE = PerformanceMetrics(net_pnl=1000.0, max_drawdown=0.10, trade_count=40)


def scenario_metrics(slip1_net, slip3_net, fee_net, gap_dd):
    s1, s3, fee, gap = build_scenarios(StressThresholds())
    return [
        (s1, PerformanceMetrics(net_pnl=slip1_net)),
        (s3, PerformanceMetrics(net_pnl=slip3_net)),
        (fee, PerformanceMetrics(net_pnl=fee_net)),
        (gap, PerformanceMetrics(net_pnl=900.0, max_drawdown=gap_dd)),
    ]


class TestStressChecks:
    """场景检查与多数表决测试"""

    def test_scenario_names(self):
        names = [s.name for s in build_scenarios(StressThresholds())]

        assert names == ["slippage_1bps", "slippage_3bps", "fee_plus_1", "data_gaps_10pct"]

    def test_all_pass(self):
        results = evaluate_checks(BASELINE, scenario_metrics(800, 600, 700, 0.12))
        report = certify(BASELINE, results)

        assert report.tests_passed == 4
        assert report.stress_passed

    def test_three_of_four_passes(self):
        """3/4 通过即认证通过"""
        results = evaluate_checks(BASELINE, scenario_metrics(800, -10, 700, 0.12))
        report = certify(BASELINE, results)

        assert report.tests_passed == 3
        assert report.stress_passed
        assert [r.scenario.name for r in results if not r.check.passed] == ["slippage_3bps"]

    def test_two_of_four_fails(self):
        """2/4 通过时认证失败"""
        results = evaluate_checks(BASELINE, scenario_metrics(800, -10, 400, 0.12))
        report = certify(BASELINE, results)

        assert report.tests_passed == 2
        assert not report.stress_passed
        assert report.tests_total == 4

    def test_fee_retention_boundary(self):
        """手续费场景保留基线净盈亏的一半即通过"""
        results = evaluate_checks(BASELINE, scenario_metrics(800, 600, 500, 0.12))

        assert results[2].check.passed
        assert results[2].check.required == pytest.approx(500.0)

    def test_gap_drawdown_limit(self):
        """删除K线场景回撤上限 = 1.5 * 基线回撤 + 0.05"""
        results = evaluate_checks(BASELINE, scenario_metrics(800, 600, 700, 0.21))

        assert not results[3].check.passed
        assert results[3].check.required == pytest.approx(0.20)

    def test_slippage_requires_profit(self):
        results = evaluate_checks(BASELINE, scenario_metrics(0, 600, 700, 0.12))

        assert not results[0].check.passed


class TestGapIndices:

    def test_seeded(self):
        assert gap_indices(1000, 0.1, seed=3) == gap_indices(1000, 0.1, seed=3)

    def test_fraction(self):
        removed = gap_indices(1000, 0.1, seed=3)

        assert 50 < len(removed) < 150
        assert removed == sorted(set(removed))


class TestRunStressTest:
    """完整压力测试"""

    def test_insufficient_bars(self, bar_factory):
        with pytest.raises(InsufficientDataError):
            run_stress_test({}, bar_factory([100.0] * 99))

    def test_report(self, breakout_bars):
        report = run_stress_test({}, breakout_bars, "momentum_breakout_v1", seed=1)

        assert report.tests_total == 4
        assert report.baseline.trade_count > 0
        assert len(report.results) == 4
        assert report.results[0].metrics.net_pnl < report.baseline.net_pnl
        assert report.to_dict()["tests_passed"] == report.tests_passed

    def test_deterministic_with_seed(self, breakout_bars):
        first = run_stress_test({}, breakout_bars, seed=9)
        second = run_stress_test({}, breakout_bars, seed=9)

        assert first == second
