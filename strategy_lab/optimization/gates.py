"""
门控评估 - 冠军/挑战者与前向切分的验收检查

所有门控按逻辑与组合，无论整体结果如何都记录每个门控的 required/actual/passed。
"""
from typing import List

from config.validator import GateConstraints, WalkForwardConstraints, validate_model
from strategy_lab.domain.models import GateReport, GateResult, PerformanceMetrics
from strategy_lab.services.objective import score


def relative_improvement(baseline_score: float, candidate_score: float) -> float:
    """相对提升；基线非正时，候选为正记为 1，否则为 0"""
    if baseline_score > 0:
        return (candidate_score - baseline_score) / baseline_score
    return 1.0 if candidate_score > 0 else 0.0


def evaluate(
    baseline_metrics: PerformanceMetrics,
    candidate_metrics: PerformanceMetrics,
    constraints=None,
    objective_config=None
) -> GateReport:
    """
    单切分门控：最少交易数、最大回撤、相对基线分数提升

    提升门控在相对提升达到阈值或候选分数严格高于基线时通过。
    """
    limits = validate_model(GateConstraints, constraints)
    baseline_score = score(baseline_metrics, objective_config)
    candidate_score = score(candidate_metrics, objective_config)
    improvement = relative_improvement(baseline_score, candidate_score)

    gates: List[GateResult] = [
        GateResult(
            name="min_trades",
            required=limits.min_trades,
            actual=candidate_metrics.trade_count,
            passed=candidate_metrics.trade_count >= limits.min_trades,
        ),
        GateResult(
            name="max_drawdown",
            required=limits.max_dd,
            actual=candidate_metrics.max_drawdown,
            passed=candidate_metrics.max_drawdown <= limits.max_dd,
        ),
        GateResult(
            name="score_improvement",
            required=limits.min_improvement,
            actual=improvement,
            passed=improvement >= limits.min_improvement or candidate_score > baseline_score,
        ),
    ]
    return GateReport(tuple(gates))


def evaluate_walk_forward(
    val_metrics: PerformanceMetrics,
    val_score: float,
    best_score: float,
    test_score: float,
    baseline_test_score: float,
    constraints=None
) -> GateReport:
    """
    前向门控：验证集交易数/回撤、验证分数超过历史最佳、测试分数不回退

    阈值按 |分数| 缩放，分数为负时方向不变。
    """
    limits = validate_model(WalkForwardConstraints, constraints)
    required_val = best_score + abs(best_score) * limits.improvement_threshold
    required_test = baseline_test_score - abs(baseline_test_score) * limits.test_regression_eps

    gates: List[GateResult] = [
        GateResult(
            name="val_min_trades",
            required=limits.min_trades,
            actual=val_metrics.trade_count,
            passed=val_metrics.trade_count >= limits.min_trades,
        ),
        GateResult(
            name="val_max_drawdown",
            required=limits.max_dd,
            actual=val_metrics.max_drawdown,
            passed=val_metrics.max_drawdown <= limits.max_dd,
        ),
        GateResult(
            name="val_improvement",
            required=required_val,
            actual=val_score,
            passed=val_score >= required_val,
        ),
        GateResult(
            name="test_regression",
            required=required_test,
            actual=test_score,
            passed=test_score >= required_test,
        ),
    ]
    return GateReport(tuple(gates))
