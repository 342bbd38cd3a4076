"""
前向调参集成测试（内存存储 + 内存K线）
"""

import asyncio
import random
from unittest.mock import AsyncMock, Mock, patch

import pytest

from strategy_lab.adapters.scheduler import AsyncioJobScheduler
from strategy_lab.data_provider import FrameBarReader
from strategy_lab.domain.errors import InsufficientDataError, StoreError
from strategy_lab.domain.models import DatasetRef, GateReport, GateResult
from strategy_lab.optimization.mutation import MutationPolicy
from strategy_lab.services.data_service import DataService
from strategy_lab.services.tuning_service import TuningService, compute_split

VARIANT = "momentum_breakout_v1"
DATASET = DatasetRef("TEST", "5m")
ALWAYS_PASS = GateReport((GateResult("stub", 0, 0, True),))


@pytest.fixture
def data_service(breakout_bars, frame_factory):
    reader = FrameBarReader()
    reader.add("TEST", "5m", frame_factory(breakout_bars))
    return DataService(reader)


def make_service(store, data_service, scheduler, batch_size=2):
    return TuningService(
        store, data_service, scheduler,
        mutation_policy=MutationPolicy(rng=random.Random(42)),
        batch_size=batch_size,
    )


async def start(service, schema, max_trials=5):
    return await service.start_job(
        group_id="group-1",
        dataset=DATASET,
        strategy_variant=VARIANT,
        schema=schema,
        champion_params=schema.defaults(),
        max_trials=max_trials,
    )


class TestComputeSplit:

    def test_chronological(self):
        from config.validator import SplitConfig

        bounds = compute_split(200, SplitConfig(train_pct=0.6, val_pct=0.2))

        assert bounds.ranges == {"train": (0, 120), "val": (120, 160), "test": (160, 200)}


class TestTuningService:
    """TuningService 测试类"""

    def test_resumes_until_completed(self, memory_store, data_service, breakout_schema):
        """批次通过调度器续跑直到试验数用完"""
        scheduler = AsyncioJobScheduler()
        service = make_service(memory_store, data_service, scheduler, batch_size=2)

        async def run():
            job = await start(service, breakout_schema, max_trials=5)
            await scheduler.drain()
            return await memory_store.get(TuningService.JOBS, job.job_id)

        record = asyncio.run(run())
        trials = asyncio.run(memory_store.query(TuningService.TRIALS, filters={"job_id": record["id"]}))

        assert record["status"] == "completed"
        assert record["trials_completed"] == 5
        assert record["batch_number"] == 3
        assert set(record["baseline"]) == {"train", "val", "test"}
        assert sorted(t["trial_number"] for t in trials) == [1, 2, 3, 4, 5]

    def test_single_batch_schedules_next(self, memory_store, data_service, breakout_schema):
        scheduler = Mock()
        service = make_service(memory_store, data_service, scheduler, batch_size=2)
        job = asyncio.run(start(service, breakout_schema))

        trials, updated = asyncio.run(service.run_tuning_batch(job))

        assert len(trials) == 2
        assert updated.status == "running"
        assert updated.trials_completed == 2
        assert job.trials_completed == 0
        assert scheduler.schedule.call_count == 2
        scheduler.schedule.assert_called_with(job.job_id, 2, service.resume)

    def test_stale_invocation_skipped(self, memory_store, data_service, breakout_schema):
        """版本冲突的重复调用直接跳过"""
        service = make_service(memory_store, data_service, Mock())
        job = asyncio.run(start(service, breakout_schema))

        asyncio.run(service.run_tuning_batch(job))
        trials, state = asyncio.run(service.run_tuning_batch(job))

        assert trials == []
        assert state is job
        record = asyncio.run(memory_store.get(TuningService.JOBS, job.job_id))
        assert record["trials_completed"] == 2

    def test_terminal_job_noop(self, memory_store, data_service, breakout_schema):
        service = make_service(memory_store, data_service, Mock())
        job = asyncio.run(start(service, breakout_schema, max_trials=2))

        _, done = asyncio.run(service.run_tuning_batch(job))
        trials, again = asyncio.run(service.run_tuning_batch(done))

        assert done.status == "completed"
        assert trials == []
        assert again is done

    def test_accepted_trial_updates_champion(self, memory_store, data_service, breakout_schema):
        """通过前向门控的试验成为新冠军并持久化版本"""
        service = make_service(memory_store, data_service, Mock(), batch_size=3)
        job = asyncio.run(start(service, breakout_schema, max_trials=3))

        with patch("strategy_lab.services.tuning_service.evaluate_walk_forward", return_value=ALWAYS_PASS):
            trials, updated = asyncio.run(service.run_tuning_batch(job))

        assert all(t.accepted for t in trials)
        assert updated.champion.version_id == trials[-1].version_id
        assert updated.champion.params == trials[-1].child_params
        assert updated.best_score == trials[-1].val_score
        for prev, nxt in zip(trials, trials[1:]):
            assert nxt.parent_params == prev.child_params
        version = asyncio.run(memory_store.get("strategy_versions", trials[-1].version_id))
        assert version["source"] == "tuning"

    def test_single_failure_continues(self, memory_store, data_service, breakout_schema):
        """单个试验持久化失败时记录日志并继续"""
        service = make_service(memory_store, data_service, Mock(), batch_size=3)
        job = asyncio.run(start(service, breakout_schema, max_trials=3))

        with patch.object(service, "_insert_trial", AsyncMock(side_effect=[StoreError("down"), None, None])):
            trials, updated = asyncio.run(service.run_tuning_batch(job))

        assert len(trials) == 3
        assert updated.status == "completed"
        assert updated.consecutive_failures == 0

    def test_consecutive_failures_fail_job(self, memory_store, data_service, breakout_schema):
        """连续失败达到上限时任务标记为 failed 且不再续跑"""
        scheduler = Mock()
        service = make_service(memory_store, data_service, scheduler, batch_size=5)
        job = asyncio.run(start(service, breakout_schema, max_trials=10))

        with patch.object(service, "_insert_trial", AsyncMock(side_effect=StoreError("db down"))):
            with pytest.raises(StoreError):
                asyncio.run(service.run_tuning_batch(job))

        record = asyncio.run(memory_store.get(TuningService.JOBS, job.job_id))
        assert record["status"] == "failed"
        assert "db down" in record["error"]
        assert scheduler.schedule.call_count == 1

    def test_insufficient_bars(self, memory_store, bar_factory, frame_factory, breakout_schema):
        reader = FrameBarReader()
        reader.add("TEST", "5m", frame_factory(bar_factory([100.0] * 50)))
        service = make_service(memory_store, DataService(reader), Mock())
        job = asyncio.run(start(service, breakout_schema))

        with pytest.raises(InsufficientDataError):
            asyncio.run(service.run_tuning_batch(job))
        record = asyncio.run(memory_store.get(TuningService.JOBS, job.job_id))
        assert record["status"] == "failed"
