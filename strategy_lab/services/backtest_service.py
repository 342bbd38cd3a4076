"""
统一回测服务 - 按版本运行回测并持久化运行、指标与交易
"""
import hashlib
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple

from strategy_lab.domain.errors import MissingDatasetError
from strategy_lab.domain.interfaces import IRecordStore
from strategy_lab.domain.models import DatasetRef, PerformanceMetrics, Trade
from strategy_lab.engine import run_backtest
from strategy_lab.services.data_service import DataService
from strategy_lab.services.metrics_calculator import MetricsCalculator
from strategy_lab.services.strategy_version_service import StrategyVersionService
from strategy_lab.services.synthetic import generate_synthetic_trades
from utils.decorators import retry_on_error
from utils.logger_utils import get_logger

logger = get_logger("strategy_lab.backtest")


def _stable_trade_id(run_id: str, index: int, trade: Trade) -> str:
    parts = [
        run_id,
        str(index),
        trade.entry_time.isoformat(),
        trade.exit_time.isoformat(),
        trade.side,
        repr(trade.entry_price),
    ]
    payload = "|".join(parts).encode("utf-8")
    return hashlib.blake2b(payload, digest_size=8).hexdigest()


class BacktestService:
    """统一回测服务"""

    RUNS = "backtest_runs"
    TRADES = "trades"

    def __init__(self, store: IRecordStore, data_service: Optional[DataService] = None):
        self.store = store
        self.data = data_service
        self.versions = StrategyVersionService(store)

    @retry_on_error()
    async def save_run(
        self,
        version_id: str,
        trades: List[Trade],
        metrics: PerformanceMetrics,
        dataset: Optional[DatasetRef] = None,
        synthetic: bool = False,
        run_type: str = "backtest"
    ) -> str:
        """保存回测运行、指标与交易，返回运行ID（run_type: backtest|paper|shadow）"""
        run = await self.store.insert(self.RUNS, {
            "version_id": version_id,
            "dataset": asdict(dataset) if dataset else None,
            "status": "completed",
            "run_type": run_type,
            "synthetic": synthetic,
            "metrics": metrics.to_dict(),
        })
        for i, trade in enumerate(trades):
            await self.store.upsert(self.TRADES, {
                "id": _stable_trade_id(run["id"], i, trade),
                "run_id": run["id"],
                **trade.to_dict(),
            })
        logger.debug("保存回测运行 run_id=%s version_id=%s trades=%s", run["id"], version_id, len(trades))
        return run["id"]

    async def run_version(
        self,
        version_id: str,
        dataset: DatasetRef,
        cost_model=None,
        allow_synthetic: bool = False
    ) -> Tuple[str, List[Trade], PerformanceMetrics]:
        """
        对已保存的版本运行回测

        Args:
            version_id: 策略版本ID
            dataset: 数据集引用
            cost_model: 成本模型
            allow_synthetic: 无K线时是否允许生成模拟交易（不可复现）

        Returns:
            (运行ID, 交易列表, 指标)
        """
        version = await self.versions.get_version(version_id)
        synthetic = False
        try:
            if self.data is None:
                raise MissingDatasetError("No data service configured")
            bars = await self.data.get_bars(dataset)
            trades, metrics = run_backtest(bars, version["params"], version["strategy_variant"], cost_model)
        except MissingDatasetError:
            if not allow_synthetic:
                raise
            logger.warning("数据集为空，使用模拟交易 version_id=%s", version_id)
            trades = generate_synthetic_trades(cost_model)
            metrics = MetricsCalculator.aggregate(trades)
            synthetic = True

        run_id = await self.save_run(version_id, trades, metrics, dataset, synthetic=synthetic)
        logger.info(
            "回测完成 version_id=%s trades=%s net_pnl=%.2f pf=%.2f",
            version_id, metrics.trade_count, metrics.net_pnl, metrics.profit_factor
        )
        return run_id, trades, metrics

    async def list_runs(self, version_id: str) -> List[Dict[str, Any]]:
        return await self.store.query(self.RUNS, filters={"version_id": version_id}, order_by="created_at")
