"""
策略版本管理服务
"""
import hashlib
import json
from typing import Any, Dict, List, Optional

from strategy_lab.domain.errors import RecordNotFoundError
from strategy_lab.domain.interfaces import IRecordStore
from utils.decorators import retry_on_error

# 生命周期状态
LIFECYCLE_DRAFT = "DRAFT"
LIFECYCLE_BACKTEST_WINNER = "BACKTEST_WINNER"
LIFECYCLE_PAPER_RUNNING = "PAPER_RUNNING"
LIFECYCLE_LIVE_READY = "LIVE_READY"


def params_hash(params: Dict[str, Any]) -> str:
    """参数集内容哈希（规范化 JSON 的 blake2b-64），仅作去重键"""
    payload = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.blake2b(payload.encode("utf-8"), digest_size=8).hexdigest()


class StrategyVersionService:
    """策略版本管理服务"""

    TABLE = "strategy_versions"

    def __init__(self, store: IRecordStore):
        self.store = store

    @retry_on_error()
    async def create_version(
        self,
        group_id: str,
        strategy_variant: str,
        params: Dict[str, Any],
        source: str = "manual",
        parent_id: Optional[str] = None,
        status: str = "draft"
    ) -> str:
        """
        创建策略版本（同组内相同参数哈希直接返回已有版本）

        Args:
            group_id: 分组/机器人 ID
            strategy_variant: 模板 id
            params: 参数集
            source: seed|mutation|tuning|manual
            parent_id: 父版本 ID
            status: 版本状态

        Returns:
            策略版本ID
        """
        digest = params_hash(params)
        existing = await self.store.query(
            self.TABLE, filters={"group_id": group_id, "params_hash": digest}, limit=1
        )
        if existing:
            return existing[0]["id"]

        siblings = await self.store.query(self.TABLE, filters={"group_id": group_id})
        record = await self.store.insert(self.TABLE, {
            "group_id": group_id,
            "strategy_variant": strategy_variant,
            "version_number": len(siblings) + 1,
            "params": dict(params),
            "params_hash": digest,
            "source": source,
            "parent_id": parent_id,
            "status": status,
            "lifecycle_status": LIFECYCLE_DRAFT,
        })
        return record["id"]

    @retry_on_error()
    async def get_version(self, version_id: str) -> Dict[str, Any]:
        """获取策略版本信息"""
        record = await self.store.get(self.TABLE, version_id)
        if record is None:
            raise RecordNotFoundError(f"Strategy version {version_id} not found")
        return record

    @retry_on_error()
    async def set_status(
        self,
        version_id: str,
        status: Optional[str] = None,
        lifecycle_status: Optional[str] = None
    ) -> Dict[str, Any]:
        """更新版本状态 / 生命周期"""
        changes = {}
        if status is not None:
            changes["status"] = status
        if lifecycle_status is not None:
            changes["lifecycle_status"] = lifecycle_status
        return await self.store.update(self.TABLE, version_id, changes)

    async def list_versions(self, group_id: str) -> List[Dict[str, Any]]:
        """列出分组内的版本"""
        return await self.store.query(self.TABLE, filters={"group_id": group_id}, order_by="version_number")
