"""
门控评估单元测试
"""

import pytest

from strategy_lab.domain.models import PerformanceMetrics
from strategy_lab.optimization.gates import evaluate, evaluate_walk_forward, relative_improvement


def metrics(**kwargs):
    base = {"profit_factor": 1.5, "net_pnl": 300.0, "sharpe": 0.6, "max_drawdown": 0.05, "trade_count": 20}
    base.update(kwargs)
    return PerformanceMetrics(**base)


class TestEvaluate:
    """冠军/挑战者门控测试"""

    def test_all_pass(self):
        report = evaluate(metrics(), metrics(profit_factor=2.5))

        assert report.passed
        assert [g.name for g in report.gates] == ["min_trades", "max_drawdown", "score_improvement"]
        assert report.reject_reason() is None

    def test_and_semantics(self):
        """任一门控失败则整体失败，且所有门控都被记录"""
        report = evaluate(metrics(), metrics(profit_factor=2.5, trade_count=2))

        assert not report.passed
        assert len(report.gates) == 3
        assert [g.name for g in report.failed()] == ["min_trades"]
        assert report.reject_reason().startswith("Failed gates: min_trades")

    def test_drawdown_gate(self):
        report = evaluate(metrics(), metrics(profit_factor=2.5, max_drawdown=0.3))

        assert [g.name for g in report.failed()] == ["max_drawdown"]

    def test_equal_score_rejected(self):
        report = evaluate(metrics(), metrics())

        assert [g.name for g in report.failed()] == ["score_improvement"]

    def test_small_improvement_accepted(self):
        """提升低于阈值但严格优于基线时通过"""
        report = evaluate(metrics(), metrics(net_pnl=301.0), {"min_improvement": 0.5})

        assert report.passed

    def test_constraints_dict(self):
        report = evaluate(metrics(), metrics(profit_factor=2.5), {"min_trades": 50})

        assert not report.passed
        assert report.gates[0].required == 50


class TestRelativeImprovement:

    def test_positive_baseline(self):
        assert relative_improvement(0.5, 0.6) == pytest.approx(0.2)

    def test_non_positive_baseline(self):
        assert relative_improvement(0.0, 0.1) == 1.0
        assert relative_improvement(-0.2, -0.1) == 0.0


class TestWalkForward:
    """前向门控测试"""

    def test_pass(self):
        report = evaluate_walk_forward(metrics(trade_count=40), 0.6, 0.5, 0.5, 0.5)

        assert report.passed
        assert len(report.gates) == 4

    def test_test_regression_guard(self):
        """测试分数回退 2% 超过 1% 容忍度时拒绝"""
        report = evaluate_walk_forward(metrics(trade_count=40), 0.6, 0.5, 0.49, 0.5)

        assert not report.passed
        assert [g.name for g in report.failed()] == ["test_regression"]

    def test_within_tolerance(self):
        report = evaluate_walk_forward(metrics(trade_count=40), 0.6, 0.5, 0.496, 0.5)

        assert report.passed

    def test_val_improvement_threshold(self):
        """验证分数需超过最佳分数的 3%"""
        report = evaluate_walk_forward(metrics(trade_count=40), 0.51, 0.5, 0.5, 0.5)

        assert [g.name for g in report.failed()] == ["val_improvement"]
        assert report.gates[2].required == pytest.approx(0.515)

    def test_negative_scores(self):
        """负分数时阈值方向不变"""
        report = evaluate_walk_forward(metrics(trade_count=40), -0.09, -0.1, -0.1, -0.1)

        assert report.passed
        assert report.gates[2].required == pytest.approx(-0.097)
        assert report.gates[3].required == pytest.approx(-0.101)

    def test_val_trades(self):
        report = evaluate_walk_forward(metrics(trade_count=10), 0.6, 0.5, 0.5, 0.5)

        assert [g.name for g in report.failed()] == ["val_min_trades"]
