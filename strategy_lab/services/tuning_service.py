"""
前向调参服务 - 训练/验证/测试切分 + 可续跑的批次执行

每次调用只运行有限个试验，批次结束后持久化进度（trials_completed、best_score、冠军），
仍有剩余试验时通过调度器异步续跑下一批次并立即返回。
"""
import dataclasses
import math
import uuid
from typing import Dict, List, Optional, Tuple

from config import settings
from config.validator import (
    CostModel,
    ObjectiveConfig,
    SplitConfig,
    WalkForwardConstraints,
    validate_model,
)
from strategy_lab.domain.errors import ConcurrencyError, RecordNotFoundError, StoreError
from strategy_lab.domain.interfaces import IJobScheduler, IRecordStore
from strategy_lab.domain.models import (
    BarSeries,
    ChampionState,
    DatasetRef,
    JobState,
    ParameterSchema,
    PerformanceMetrics,
    SplitBounds,
    TuningTrial,
)
from strategy_lab.engine import run_backtest
from strategy_lab.optimization.gates import evaluate_walk_forward
from strategy_lab.optimization.mutation import MutationPolicy, param_diff
from strategy_lab.services.data_service import DataService
from strategy_lab.services.objective import score
from strategy_lab.services.strategy_version_service import StrategyVersionService
from utils.decorators import retry_on_error
from utils.logger_utils import get_logger

logger = get_logger("strategy_lab.tuning")

TERMINAL_STATUSES = ("completed", "failed")


def compute_split(total: int, split: SplitConfig) -> SplitBounds:
    """按比例做时间顺序切分，剩余部分为测试集"""
    train_end = math.floor(total * split.train_pct)
    val_end = math.floor(total * (split.train_pct + split.val_pct))
    return SplitBounds(train_end=train_end, val_end=val_end, total=total)


def evaluate_splits(
    splits: Dict[str, BarSeries],
    params: Dict,
    job: JobState
) -> Tuple[Dict[str, PerformanceMetrics], Dict[str, float]]:
    """在各切分上回测并评分"""
    metrics, scores = {}, {}
    for name, bars in splits.items():
        _, metrics[name] = run_backtest(bars, params, job.strategy_variant, job.cost_model)
        scores[name] = score(metrics[name], job.objective)
    return metrics, scores


class TuningService:
    """前向调参控制器"""

    JOBS = "tuning_jobs"
    TRIALS = "tuning_trials"

    def __init__(
        self,
        store: IRecordStore,
        data_service: DataService,
        scheduler: IJobScheduler,
        mutation_policy: Optional[MutationPolicy] = None,
        batch_size: int = None
    ):
        self.store = store
        self.data = data_service
        self.scheduler = scheduler
        self.mutation = mutation_policy or MutationPolicy()
        self.versions = StrategyVersionService(store)
        self.batch_size = batch_size or settings.TUNING_BATCH_SIZE

    async def start_job(
        self,
        group_id: str,
        dataset: DatasetRef,
        strategy_variant: str,
        schema: ParameterSchema,
        champion_params: Dict,
        champion_version_id: Optional[str] = None,
        cost_model=None,
        objective=None,
        constraints=None,
        split=None,
        max_trials: int = None,
        aggressiveness: float = settings.WF_AGGRESSIVENESS,
        mutation_bias: Optional[Dict[str, str]] = None
    ) -> JobState:
        """
        创建调参任务并调度第一个批次

        Returns:
            已持久化的任务状态（status=pending）
        """
        job = JobState(
            job_id=str(uuid.uuid4()),
            group_id=group_id,
            dataset=dataset,
            strategy_variant=strategy_variant,
            schema=schema,
            cost_model=validate_model(CostModel, cost_model),
            objective=validate_model(ObjectiveConfig, objective),
            constraints=validate_model(WalkForwardConstraints, constraints),
            split=validate_model(SplitConfig, split),
            max_trials=max_trials or settings.TUNING_MAX_TRIALS,
            champion=ChampionState(
                version_id=champion_version_id,
                params=schema.normalize(champion_params),
                metrics=PerformanceMetrics(),
                score=0.0,
            ),
            aggressiveness=aggressiveness,
            mutation_bias=dict(mutation_bias or {}),
        )
        record = await self._insert_job(job)
        job.version = record["version"]
        logger.info(
            "创建调参任务 job_id=%s group_id=%s max_trials=%s", job.job_id, group_id, job.max_trials
        )
        self.scheduler.schedule(job.job_id, 1, self.resume)
        return job

    async def resume(self, job_id: str) -> Tuple[List[TuningTrial], JobState]:
        """从存储加载任务并运行下一批次（调度器回调）"""
        record = await self._get_job(job_id)
        if record is None:
            raise RecordNotFoundError(f"Tuning job {job_id} not found")
        return await self.run_tuning_batch(JobState.from_record(record), self.batch_size)

    async def run_tuning_batch(
        self,
        job_state: JobState,
        batch_size: int = None
    ) -> Tuple[List[TuningTrial], JobState]:
        """
        运行一个批次

        Args:
            job_state: 任务状态（不会被原地修改）
            batch_size: 本批次最多试验数

        Returns:
            (本批次试验, 更新后的任务状态)；批次已被其他调用领取时返回 ([], 原状态)
        """
        batch_size = batch_size or self.batch_size
        if job_state.status in TERMINAL_STATUSES:
            logger.info("任务已结束 job_id=%s status=%s", job_state.job_id, job_state.status)
            return [], job_state

        job = dataclasses.replace(job_state)
        batch_number = job.batch_number + 1

        # 领取批次：版本号不一致说明其它调用已处理
        try:
            await self._update_job(job, {"status": "running", "batch_number": batch_number})
        except ConcurrencyError:
            logger.warning(
                "批次已被领取，跳过 job_id=%s batch=%s version=%s",
                job.job_id, batch_number, job.version
            )
            return [], job_state
        job.status = "running"
        job.batch_number = batch_number

        try:
            trials = await self._run_batch(job, batch_size)
            job.status = "completed" if job.trials_remaining == 0 else "running"
            await self._update_job(job, self._progress(job))
        except Exception as e:
            job.status = "failed"
            job.error = str(e)
            logger.exception("调参批次失败 job_id=%s batch=%s", job.job_id, batch_number)
            await self._mark_failed(job)
            raise

        logger.info(
            "调参批次完成 job_id=%s batch=%s trials=%s/%s best_score=%.4f status=%s",
            job.job_id, batch_number, job.trials_completed, job.max_trials,
            job.best_score, job.status
        )
        if job.status == "running":
            self.scheduler.schedule(job.job_id, batch_number + 1, self.resume)
        return trials, job

    async def _run_batch(self, job: JobState, batch_size: int) -> List[TuningTrial]:
        bars = await self.data.get_bars(job.dataset, min_bars=settings.MIN_BARS)
        bounds = compute_split(len(bars), job.split)
        splits = {name: bars.slice(start, end) for name, (start, end) in bounds.ranges.items()}

        if job.baseline is None:
            metrics, scores = evaluate_splits(splits, job.champion.params, job)
            job.baseline = scores
            job.best_score = scores["val"]
            job.champion = dataclasses.replace(job.champion, metrics=metrics["val"], score=scores["val"])
            logger.info(
                "基线分数 job_id=%s train=%.4f val=%.4f test=%.4f",
                job.job_id, scores["train"], scores["val"], scores["test"]
            )

        trials: List[TuningTrial] = []
        for _ in range(min(batch_size, job.trials_remaining)):
            trial = self._run_trial(job, splits, bounds, job.trials_completed + 1)
            trial = await self._record_trial(job, trial)
            job.trials_completed = trial.trial_number
            if trial.accepted and trial.version_id is not None:
                job.champion = ChampionState(trial.version_id, trial.child_params, trial.val_metrics, trial.val_score)
                job.best_score = trial.val_score
                logger.info(
                    "试验通过 job_id=%s trial=%s val=%.4f test=%.4f",
                    job.job_id, trial.trial_number, trial.val_score, trial.test_score
                )
            trials.append(trial)
        return trials

    def _run_trial(self, job: JobState, splits: Dict[str, BarSeries], bounds: SplitBounds,
                   trial_number: int) -> TuningTrial:
        parent = job.champion.params
        child = self.mutation.mutate(parent, job.schema, job.aggressiveness, job.mutation_bias)
        metrics, scores = evaluate_splits(splits, child, job)
        report = evaluate_walk_forward(
            metrics["val"],
            scores["val"],
            job.best_score,
            scores["test"],
            job.baseline["test"],
            job.constraints,
        )
        return TuningTrial(
            trial_number=trial_number,
            batch_number=job.batch_number,
            parent_params=dict(parent),
            child_params=child,
            param_diff=param_diff(parent, child),
            gate_report=report,
            train_metrics=metrics["train"],
            val_metrics=metrics["val"],
            test_metrics=metrics["test"],
            train_score=scores["train"],
            val_score=scores["val"],
            test_score=scores["test"],
            split=bounds,
            accepted=report.passed,
            reject_reason=report.reject_reason(),
        )

    async def _record_trial(self, job: JobState, trial: TuningTrial) -> TuningTrial:
        """持久化试验；单次失败记录日志后继续，连续失败达到上限时中止任务"""
        try:
            if trial.accepted:
                version_id = await self.versions.create_version(
                    job.group_id,
                    job.strategy_variant,
                    trial.child_params,
                    source="tuning",
                    parent_id=job.champion.version_id,
                    status="tuned",
                )
                trial = dataclasses.replace(trial, version_id=version_id)
            await self._insert_trial(job.job_id, trial)
        except StoreError as e:
            job.consecutive_failures += 1
            logger.error(
                "试验持久化失败 job_id=%s trial=%s (%s/%s): %s",
                job.job_id, trial.trial_number, job.consecutive_failures,
                settings.MAX_CONSECUTIVE_FAILURES, e
            )
            if job.consecutive_failures >= settings.MAX_CONSECUTIVE_FAILURES:
                raise
            return dataclasses.replace(trial, version_id=None)

        job.consecutive_failures = 0
        return trial

    @staticmethod
    def _progress(job: JobState) -> Dict:
        return {
            "status": job.status,
            "trials_completed": job.trials_completed,
            "best_score": job.best_score,
            "baseline": job.baseline,
            "champion": job.champion.to_dict(),
            "champion_version_id": job.champion.version_id,
            "consecutive_failures": job.consecutive_failures,
        }

    async def _mark_failed(self, job: JobState) -> None:
        try:
            await self._update_job(job, {**self._progress(job), "error": job.error})
        except StoreError:
            logger.exception("无法标记任务失败 job_id=%s", job.job_id)

    @retry_on_error()
    async def _insert_job(self, job: JobState):
        return await self.store.insert(self.JOBS, job.to_record())

    @retry_on_error()
    async def _get_job(self, job_id: str):
        return await self.store.get(self.JOBS, job_id)

    @retry_on_error()
    async def _insert_trial(self, job_id: str, trial: TuningTrial) -> None:
        await self.store.insert(self.TRIALS, {"job_id": job_id, **trial.to_dict()})

    @retry_on_error()
    async def _update_job(self, job: JobState, changes: Dict) -> None:
        record = await self.store.update(self.JOBS, job.job_id, changes, expected_version=job.version)
        job.version = record["version"]
