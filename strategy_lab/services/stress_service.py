"""
压力测试 - 成本与数据完整性扰动下的稳健性检查

基线 + 4 个扰动场景（两档额外滑点、每笔额外手续费、随机删除约 10% K线），
至少 3 个场景通过各自阈值才算通过。这是冒烟级别的稳健性检查，不是统计保证。
"""
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from config import settings
from config.validator import StressThresholds, validate_model
from strategy_lab.domain.errors import InsufficientDataError
from strategy_lab.domain.interfaces import IRecordStore
from strategy_lab.domain.models import (
    BarSeries,
    DatasetRef,
    GateResult,
    PerformanceMetrics,
    StressReport,
    StressScenario,
    StressScenarioResult,
)
from strategy_lab.engine import simulate
from strategy_lab.services.data_service import DataService
from strategy_lab.services.metrics_calculator import MetricsCalculator
from strategy_lab.services.strategy_version_service import (
    LIFECYCLE_BACKTEST_WINNER,
    StrategyVersionService,
)
from utils.decorators import retry_on_error
from utils.logger_utils import get_logger

logger = get_logger("strategy_lab.stress")


def build_scenarios(thresholds: StressThresholds) -> List[StressScenario]:
    """按阈值配置生成 4 个扰动场景"""
    low_bps, high_bps = thresholds.slippage_bps
    return [
        StressScenario(f"slippage_{low_bps:g}bps", cost_perturbation={"extra_slippage_bps": low_bps}),
        StressScenario(f"slippage_{high_bps:g}bps", cost_perturbation={"extra_slippage_bps": high_bps}),
        StressScenario(f"fee_plus_{thresholds.extra_fee:g}", cost_perturbation={"extra_fee": thresholds.extra_fee}),
        StressScenario(
            f"data_gaps_{round(thresholds.gap_fraction * 100)}pct",
            data_perturbation={"gap_fraction": thresholds.gap_fraction},
        ),
    ]


def gap_indices(total: int, fraction: float, seed: Optional[int] = None) -> List[int]:
    """随机选取约 fraction 比例的K线下标用于删除"""
    rng = np.random.default_rng(seed)
    return np.flatnonzero(rng.random(total) < fraction).tolist()


def check_scenario(
    scenario: StressScenario,
    baseline: PerformanceMetrics,
    metrics: PerformanceMetrics,
    thresholds: StressThresholds
) -> GateResult:
    """单个场景的通过检查"""
    if scenario.data_perturbation:
        required = baseline.max_drawdown * thresholds.dd_multiplier + thresholds.dd_slack
        return GateResult(scenario.name, required, metrics.max_drawdown, metrics.max_drawdown <= required)
    if "extra_fee" in scenario.cost_perturbation:
        required = baseline.net_pnl * thresholds.fee_retention
        return GateResult(scenario.name, required, metrics.net_pnl, metrics.net_pnl >= required)
    # 滑点场景需保持净盈利
    return GateResult(scenario.name, 0.0, metrics.net_pnl, metrics.net_pnl > 0)


def evaluate_checks(
    baseline: PerformanceMetrics,
    scenario_metrics: Sequence[Tuple[StressScenario, PerformanceMetrics]],
    thresholds=None
) -> List[StressScenarioResult]:
    limits = validate_model(StressThresholds, thresholds)
    return [
        StressScenarioResult(scenario, metrics, check_scenario(scenario, baseline, metrics, limits))
        for scenario, metrics in scenario_metrics
    ]


def certify(
    baseline: PerformanceMetrics,
    results: Sequence[StressScenarioResult],
    thresholds=None
) -> StressReport:
    """多数表决：通过场景数 >= min_passed"""
    limits = validate_model(StressThresholds, thresholds)
    tests_passed = sum(1 for r in results if r.check.passed)
    return StressReport(
        baseline=baseline,
        results=tuple(results),
        tests_passed=tests_passed,
        tests_total=len(results),
        stress_passed=tests_passed >= limits.min_passed,
    )


def run_stress_test(
    version_params: Dict,
    bars,
    strategy_variant: str = "momentum_breakout_v1",
    cost_model=None,
    thresholds=None,
    seed: Optional[int] = None
) -> StressReport:
    """
    运行压力测试

    Args:
        version_params: 版本参数
        bars: K线（>= MIN_BARS 根）
        strategy_variant: 模板 id
        cost_model: 基础成本模型（所有场景共用）
        thresholds: StressThresholds 或 dict
        seed: 删除K线的随机种子（None 表示不固定）

    Raises:
        InsufficientDataError: K线不足
    """
    limits = validate_model(StressThresholds, thresholds)
    series = BarSeries.coerce(bars)
    if len(series) < settings.MIN_BARS:
        raise InsufficientDataError(f"Stress test needs at least {settings.MIN_BARS} bars, got {len(series)}")

    baseline = MetricsCalculator.aggregate(simulate(series, version_params, strategy_variant, cost_model))

    scenario_metrics = []
    for scenario in build_scenarios(limits):
        data_perturbation = None
        if scenario.data_perturbation:
            data_perturbation = {
                "removed_indices": gap_indices(len(series), scenario.data_perturbation["gap_fraction"], seed)
            }
        trades = simulate(
            series,
            version_params,
            strategy_variant,
            cost_model,
            extra_cost_perturbation=scenario.cost_perturbation,
            data_perturbation=data_perturbation,
        )
        scenario_metrics.append((scenario, MetricsCalculator.aggregate(trades)))

    report = certify(baseline, evaluate_checks(baseline, scenario_metrics, limits), limits)
    logger.info(
        "压力测试完成 passed=%s/%s stress_passed=%s baseline_net=%.2f",
        report.tests_passed, report.tests_total, report.stress_passed, baseline.net_pnl
    )
    return report


class StressService:
    """压力测试服务 - 按版本运行并持久化结果"""

    RESULTS = "stress_results"
    LIVE_CANDIDATES = "live_candidates"

    def __init__(self, store: IRecordStore, data_service: DataService):
        self.store = store
        self.data = data_service
        self.versions = StrategyVersionService(store)

    async def certify_version(
        self,
        version_id: str,
        dataset: DatasetRef,
        cost_model=None,
        thresholds=None,
        seed: Optional[int] = None
    ) -> StressReport:
        """运行压力测试；通过时写入 live_candidates 并把生命周期推进到 BACKTEST_WINNER"""
        version = await self.versions.get_version(version_id)
        bars = await self.data.get_bars(dataset, min_bars=settings.MIN_BARS)
        report = run_stress_test(
            version["params"], bars, version["strategy_variant"], cost_model, thresholds, seed
        )

        await self._save_result(version_id, report)
        if report.stress_passed:
            await self._save_candidate(version, report)
            await self.versions.set_status(version_id, lifecycle_status=LIFECYCLE_BACKTEST_WINNER)
            logger.info("版本通过压力测试 version_id=%s", version_id)
        return report

    @retry_on_error()
    async def _save_result(self, version_id: str, report: StressReport) -> None:
        await self.store.insert(self.RESULTS, {"version_id": version_id, **report.to_dict()})

    @retry_on_error()
    async def _save_candidate(self, version: Dict, report: StressReport) -> None:
        await self.store.upsert(self.LIVE_CANDIDATES, {
            "id": version["id"],
            "group_id": version.get("group_id"),
            "version_id": version["id"],
            "params": version["params"],
            "stress_tests_passed": report.tests_passed,
            "stress_tests_total": report.tests_total,
            "baseline_net_pnl": report.baseline.net_pnl,
            "baseline_max_drawdown": report.baseline.max_drawdown,
        })
