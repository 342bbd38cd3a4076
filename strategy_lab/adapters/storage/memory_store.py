"""
内存存储适配器 - 实现IRecordStore接口（测试与单进程运行）
"""
import copy
import time
import uuid
from typing import Any, Dict, List, Optional

from strategy_lab.domain.errors import ConcurrencyError, RecordNotFoundError, StoreError
from strategy_lab.domain.interfaces import IRecordStore


class MemoryRecordStore(IRecordStore):
    """内存记录存储（带乐观锁版本号）"""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._table(table)
        stored = copy.deepcopy(record)
        stored.setdefault('id', str(uuid.uuid4()))
        if stored['id'] in rows:
            raise StoreError(f"Duplicate id {stored['id']} in {table}")
        stored.setdefault('version', 0)
        stored.setdefault('created_at', int(time.time()))
        rows[stored['id']] = stored
        return copy.deepcopy(stored)

    async def upsert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._table(table)
        record_id = record.get('id')
        if record_id is None or record_id not in rows:
            return await self.insert(table, record)
        return await self.update(table, record_id, record)

    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._table(table).get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Dict[str, Any]:
        rows = self._table(table)
        current = rows.get(record_id)
        if current is None:
            raise RecordNotFoundError(f"{table}/{record_id} not found")
        if expected_version is not None and current.get('version', 0) != expected_version:
            raise ConcurrencyError(
                f"{table}/{record_id} version {current.get('version', 0)} != expected {expected_version}"
            )
        updated = {**current, **copy.deepcopy(changes)}
        updated['id'] = record_id
        updated['version'] = current.get('version', 0) + 1
        updated['updated_at'] = int(time.time())
        rows[record_id] = updated
        return copy.deepcopy(updated)

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        rows = [
            r for r in self._table(table).values()
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            field = order_by.lstrip('-')
            rows.sort(key=lambda r: (r.get(field) is None, r.get(field)), reverse=order_by.startswith('-'))
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)
