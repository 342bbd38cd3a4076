"""
续跑调度器 - asyncio 后台任务（触发方不等待）
"""
import asyncio
from typing import Any, Awaitable, Callable, Set, Tuple

from strategy_lab.domain.interfaces import IJobScheduler
from utils.logger_utils import get_logger

logger = get_logger("strategy_lab.scheduler")


class AsyncioJobScheduler(IJobScheduler):
    """基于事件循环的续跑调度，按 (job_id, batch_number) 去重"""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self._scheduled: Set[Tuple[str, int]] = set()
        self._tasks: Set[asyncio.Task] = set()

    def schedule(
        self,
        job_id: str,
        batch_number: int,
        callback: Callable[[str], Awaitable[Any]]
    ) -> bool:
        key = (job_id, batch_number)
        if key in self._scheduled:
            logger.debug("批次已调度，忽略 job_id=%s batch=%s", job_id, batch_number)
            return False
        self._scheduled.add(key)

        task = asyncio.get_running_loop().create_task(self._run(job_id, batch_number, callback))
        # 保留任务引用直到完成
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("已调度续跑 job_id=%s batch=%s", job_id, batch_number)
        return True

    async def _run(self, job_id: str, batch_number: int, callback) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        try:
            await callback(job_id)
        except Exception:
            # 无人等待该任务，失败只能在此记录；任务状态已由服务层标记
            logger.exception("续跑失败 job_id=%s batch=%s", job_id, batch_number)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """等待全部续跑（续跑中新调度的任务也会被等待）"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
