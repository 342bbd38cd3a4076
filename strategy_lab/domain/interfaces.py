"""
接口抽象层 - 外部协作方（K线读取、记录存储、任务调度）
"""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from strategy_lab.domain.models import Bar


class IBarReader(ABC):
    """K线读取接口（按时间升序返回）"""

    @abstractmethod
    async def read_bars(
        self,
        symbol: str,
        timeframe: str,
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> List[Bar]:
        """读取K线"""
        pass


class IRecordStore(ABC):
    """记录存储接口（按 id 的增/查/改）

    每条记录带 version 计数，update 传入 expected_version 时做乐观锁校验。
    """

    @abstractmethod
    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """插入记录（缺少 id 时自动生成），返回存储后的记录"""
        pass

    @abstractmethod
    async def upsert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """按 id 插入或覆盖"""
        pass

    @abstractmethod
    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """按 id 获取记录"""
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Dict[str, Any]:
        """更新记录并递增 version；版本不匹配时抛出 ConcurrencyError"""
        pass

    @abstractmethod
    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """按等值条件查询"""
        pass


class IJobScheduler(ABC):
    """续跑调度接口（触发方不等待执行完成）"""

    @abstractmethod
    def schedule(
        self,
        job_id: str,
        batch_number: int,
        callback: Callable[[str], Awaitable[Any]]
    ) -> bool:
        """调度一次批次续跑，同一 (job_id, batch_number) 只调度一次；返回是否新调度"""
        pass

    @abstractmethod
    async def drain(self) -> None:
        """等待所有已调度的续跑完成"""
        pass


class IFeatureCache(ABC):
    """缓存接口"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """获取缓存"""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """设置缓存"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """删除缓存"""
        pass
