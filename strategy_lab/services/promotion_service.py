"""
版本晋级服务 - draft -> backtested -> approved_paper -> approved_live
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from strategy_lab.domain.errors import ConfigurationError
from strategy_lab.domain.interfaces import IRecordStore
from strategy_lab.domain.models import GateReport, GateResult
from strategy_lab.services.backtest_service import BacktestService
from strategy_lab.services.strategy_version_service import (
    LIFECYCLE_BACKTEST_WINNER,
    LIFECYCLE_DRAFT,
    LIFECYCLE_LIVE_READY,
    LIFECYCLE_PAPER_RUNNING,
    StrategyVersionService,
)
from utils.logger_utils import get_logger

logger = get_logger("strategy_lab.promotion")


@dataclass(frozen=True)
class PromotionRule:
    """晋级规则"""
    from_statuses: Tuple[str, ...]
    min_trades: int
    min_pf: float = 0.0
    max_dd: float = float("inf")  # 峰值权益比例
    requires_paper_history: bool = False


PROMOTION_RULES: Dict[str, PromotionRule] = {
    "backtested": PromotionRule(("draft", "candidate", "champion", "tuned"), min_trades=10),
    "approved_paper": PromotionRule(("backtested",), min_trades=30, min_pf=1.0, max_dd=0.05),
    "approved_live": PromotionRule(
        ("approved_paper",), min_trades=50, min_pf=1.2, max_dd=0.03, requires_paper_history=True
    ),
}

STATUS_TO_LIFECYCLE = {
    "draft": LIFECYCLE_DRAFT,
    "backtested": LIFECYCLE_BACKTEST_WINNER,
    "approved_paper": LIFECYCLE_PAPER_RUNNING,
    "approved_live": LIFECYCLE_LIVE_READY,
}

PAPER_RUN_TYPES = ("paper", "shadow")


def aggregate_runs(runs: List[Dict[str, Any]]) -> Dict[str, Any]:
    """汇总多次运行：总交易数、按交易数加权的盈亏比、最大回撤、是否有模拟盘记录"""
    total_trades = 0
    weighted_pf = 0.0
    max_dd = 0.0
    has_paper_run = False
    for run in runs:
        metrics = run.get("metrics") or {}
        trades = metrics.get("trade_count", 0)
        total_trades += trades
        weighted_pf += metrics.get("profit_factor", 0.0) * trades
        max_dd = max(max_dd, abs(metrics.get("max_drawdown", 0.0)))
        if run.get("run_type") in PAPER_RUN_TYPES:
            has_paper_run = True
    return {
        "trade_count": total_trades,
        "profit_factor": weighted_pf / total_trades if total_trades else 0.0,
        "max_drawdown": max_dd,
        "has_paper_run": has_paper_run,
    }


def evaluate_promotion(current_status: str, target: str, summary: Dict[str, Any]) -> GateReport:
    """按晋级规则生成门控报告"""
    rule = PROMOTION_RULES.get(target)
    if rule is None:
        raise ConfigurationError(f"Invalid promotion target {target!r}")

    gates = [
        GateResult("from_status", list(rule.from_statuses), current_status, current_status in rule.from_statuses),
        GateResult("min_trades", rule.min_trades, summary["trade_count"], summary["trade_count"] >= rule.min_trades),
        GateResult("min_profit_factor", rule.min_pf, summary["profit_factor"], summary["profit_factor"] >= rule.min_pf),
        GateResult("max_drawdown", rule.max_dd, summary["max_drawdown"], summary["max_drawdown"] <= rule.max_dd),
    ]
    if rule.requires_paper_history:
        gates.append(GateResult("paper_history", True, summary["has_paper_run"], summary["has_paper_run"]))
    return GateReport(tuple(gates))


class PromotionService:
    """版本晋级服务"""

    def __init__(self, store: IRecordStore):
        self.store = store
        self.versions = StrategyVersionService(store)
        self.backtests = BacktestService(store)

    async def promote(self, version_id: str, target: str) -> GateReport:
        """校验并晋级版本；未通过时返回报告且不修改状态"""
        version = await self.versions.get_version(version_id)
        runs = await self.backtests.list_runs(version_id)
        runs = [r for r in runs if not r.get("synthetic")]
        report = evaluate_promotion(version.get("status", "draft"), target, aggregate_runs(runs))

        if report.passed:
            await self.versions.set_status(
                version_id, status=target, lifecycle_status=STATUS_TO_LIFECYCLE[target]
            )
            logger.info("版本晋级 version_id=%s -> %s", version_id, target)
        else:
            logger.info("版本晋级被拒绝 version_id=%s target=%s %s", version_id, target, report.reject_reason())
        return report
