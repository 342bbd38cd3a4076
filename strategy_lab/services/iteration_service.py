"""
冠军/挑战者迭代服务

每轮：从当前冠军变异 -> 回测 -> 评分 -> 门控 -> 接受或拒绝。
每轮恰好产生一条 Iteration 记录；拒绝是正常结果而非错误。
"""
from typing import List, Optional

from config import settings
from config.validator import StopConditions, validate_model
from strategy_lab.domain.errors import ConfigurationError, InsufficientDataError, MissingDatasetError
from strategy_lab.domain.interfaces import IRecordStore
from strategy_lab.domain.models import BarSeries, ChampionState, GroupState, Iteration
from strategy_lab.engine import run_backtest
from strategy_lab.optimization.gates import evaluate
from strategy_lab.optimization.mutation import MutationPolicy, param_diff
from strategy_lab.services.backtest_service import BacktestService
from strategy_lab.services.objective import score
from strategy_lab.services.strategy_version_service import StrategyVersionService
from utils.decorators import retry_on_error
from utils.logger_utils import get_logger

logger = get_logger("strategy_lab.iteration")


class IterationService:
    """冠军/挑战者迭代控制器"""

    GROUPS = "experiment_groups"
    ITERATIONS = "iterations"

    def __init__(self, store: IRecordStore, mutation_policy: Optional[MutationPolicy] = None):
        self.store = store
        self.mutation = mutation_policy or MutationPolicy()
        self.versions = StrategyVersionService(store)
        self.backtests = BacktestService(store)

    async def run_iteration_batch(
        self,
        group_state: GroupState,
        max_iterations: int,
        aggressiveness: float,
        stop_conditions=None
    ) -> List[Iteration]:
        """
        运行一批迭代

        Args:
            group_state: 分组状态（冠军指针只在持久化成功后更新）
            max_iterations: 最大轮数
            aggressiveness: 变异激进程度 [0, 1]
            stop_conditions: StopConditions 或 dict（门控阈值 + stop_on_failure）

        Returns:
            本批次的迭代记录
        """
        conditions = validate_model(StopConditions, stop_conditions)
        if max_iterations < 0:
            raise ConfigurationError(f"max_iterations must be >= 0, got {max_iterations}")
        if group_state.bars is None or len(group_state.bars) == 0:
            raise MissingDatasetError(f"Group {group_state.group_id} has no bars")
        if len(group_state.bars) < settings.MIN_BARS:
            raise InsufficientDataError(
                f"Group {group_state.group_id} needs at least {settings.MIN_BARS} bars, got {len(group_state.bars)}"
            )
        bars = BarSeries.coerce(group_state.bars)

        await self._ensure_group_record(group_state)
        if group_state.champion is None:
            await self._seed_champion(group_state, bars)

        iterations: List[Iteration] = []
        for _ in range(max_iterations):
            iteration = await self._run_cycle(group_state, bars, aggressiveness, conditions)
            iterations.append(iteration)
            if not iteration.accepted and conditions.stop_on_failure:
                logger.info("首次拒绝，提前停止 group_id=%s seq=%s", group_state.group_id, iteration.sequence_number)
                break

        accepted = sum(1 for it in iterations if it.accepted)
        logger.info(
            "迭代批次完成 group_id=%s iterations=%s accepted=%s champion=%s score=%.4f",
            group_state.group_id, len(iterations), accepted,
            group_state.champion.version_id, group_state.champion.score
        )
        return iterations

    async def _run_cycle(self, group_state: GroupState, bars: BarSeries, aggressiveness: float,
                         conditions: StopConditions) -> Iteration:
        champion = group_state.champion
        sequence_number = group_state.iteration_count + 1

        child = self.mutation.mutate(champion.params, group_state.schema, aggressiveness, group_state.mutation_bias)
        trades, metrics = run_backtest(bars, child, group_state.strategy_variant, group_state.cost_model)
        child_score = score(metrics, group_state.objective)
        report = evaluate(champion.metrics, metrics, conditions, group_state.objective)

        version_id = await self.versions.create_version(
            group_state.group_id,
            group_state.strategy_variant,
            child,
            source="mutation",
            parent_id=champion.version_id,
            status="candidate",
        )
        await self.backtests.save_run(version_id, trades, metrics)

        iteration = Iteration(
            sequence_number=sequence_number,
            parent_params=dict(champion.params),
            child_params=child,
            param_diff=param_diff(champion.params, child),
            gate_report=report,
            metrics_before=champion.metrics,
            metrics_after=metrics,
            accepted=report.passed,
            reject_reason=report.reject_reason(),
            score_before=champion.score,
            score_after=child_score,
            challenger_version_id=version_id,
        )
        await self._append_iteration(group_state.group_id, iteration)

        if iteration.accepted:
            await self._persist_champion(
                group_state,
                ChampionState(version_id, child, metrics, child_score),
                sequence_number,
            )
            if champion.version_id and champion.version_id != version_id:
                await self.versions.set_status(champion.version_id, status="superseded")
            await self.versions.set_status(version_id, status="champion")
            logger.info(
                "挑战者胜出 group_id=%s seq=%s score %.4f -> %.4f",
                group_state.group_id, sequence_number, champion.score, child_score
            )
        else:
            await self._persist_progress(group_state, sequence_number)
            if version_id != champion.version_id:
                await self.versions.set_status(version_id, status="rejected")
            logger.debug(
                "挑战者被拒绝 group_id=%s seq=%s reason=%s",
                group_state.group_id, sequence_number, iteration.reject_reason
            )
        return iteration

    async def _seed_champion(self, group_state: GroupState, bars: BarSeries) -> None:
        """无冠军时用 Schema 默认值生成"""
        params = group_state.schema.defaults()
        version_id = await self.versions.create_version(
            group_state.group_id, group_state.strategy_variant, params, source="seed", status="champion"
        )
        trades, metrics = run_backtest(bars, params, group_state.strategy_variant, group_state.cost_model)
        await self.backtests.save_run(version_id, trades, metrics)
        champion = ChampionState(version_id, params, metrics, score(metrics, group_state.objective))
        await self._persist_champion(group_state, champion, group_state.iteration_count)
        logger.info("已用默认参数生成冠军 group_id=%s version_id=%s", group_state.group_id, version_id)

    @retry_on_error()
    async def _ensure_group_record(self, group_state: GroupState) -> None:
        record = await self.store.get(self.GROUPS, group_state.group_id)
        if record is None:
            record = await self.store.insert(self.GROUPS, {
                "id": group_state.group_id,
                "strategy_variant": group_state.strategy_variant,
                "champion": None,
                "iteration_count": group_state.iteration_count,
            })
            group_state.version = record["version"]
            return

        # 恢复已持久化的游标和冠军指针
        group_state.version = record["version"]
        group_state.iteration_count = record.get("iteration_count", group_state.iteration_count)
        if group_state.champion is None:
            group_state.champion = ChampionState.from_dict(record.get("champion"))

    @retry_on_error()
    async def _append_iteration(self, group_id: str, iteration: Iteration) -> None:
        await self.store.insert(self.ITERATIONS, {"group_id": group_id, **iteration.to_dict()})

    async def _persist_champion(self, group_state: GroupState, champion: ChampionState,
                                iteration_count: int) -> None:
        """先持久化（乐观锁），成功后才更新内存中的冠军指针"""
        record = await self._update_group(group_state, {
            "champion": champion.to_dict(),
            "champion_version_id": champion.version_id,
            "iteration_count": iteration_count,
        })
        group_state.version = record["version"]
        group_state.champion = champion
        group_state.iteration_count = iteration_count

    async def _persist_progress(self, group_state: GroupState, iteration_count: int) -> None:
        record = await self._update_group(group_state, {"iteration_count": iteration_count})
        group_state.version = record["version"]
        group_state.iteration_count = iteration_count

    @retry_on_error()
    async def _update_group(self, group_state: GroupState, changes):
        return await self.store.update(
            self.GROUPS, group_state.group_id, changes, expected_version=group_state.version
        )
