"""
Supabase适配器 - 实现IRecordStore接口

每个实体表的列为 id / version / body(jsonb) / created_at / updated_at，
乐观锁通过 update ... where version = expected 实现。
"""
import time
import uuid
from typing import Any, Dict, List, Optional

import httpx

from strategy_lab.domain.errors import ConcurrencyError, RecordNotFoundError, StoreError, TransientStoreError
from strategy_lab.domain.interfaces import IRecordStore
from strategy_lab.adapters.storage.supabase_client import get_supabase_client
from utils.logger_utils import get_logger

_logger = get_logger("supabase.store")

# 网络层错误可重试，其余（约束冲突、权限等）直接抛出
TRANSIENT_ERRORS = (httpx.TransportError, ConnectionError, TimeoutError)


def _row_to_record(row: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(row.get('body') or {})
    record['id'] = row['id']
    record['version'] = row.get('version', 0)
    return record


class SupabaseRecordStore(IRecordStore):
    """Supabase存储适配器"""

    def __init__(self, client=None):
        self.client = client or get_supabase_client()

    def _run(self, action: str, table: str, fn):
        start = time.monotonic()
        try:
            response = fn()
        except TRANSIENT_ERRORS as e:
            _logger.warning("Supabase %s transient failure table=%s: %s", action, table, e)
            raise TransientStoreError(f"Supabase {action} failed on {table}: {e}", raw_error=e)
        except Exception as e:
            _logger.exception("Supabase %s failed table=%s", action, table)
            raise StoreError(f"Supabase {action} failed on {table}: {e}", raw_error=e)
        _logger.debug(
            "Supabase %s ok table=%s elapsed=%.3fs",
            action,
            table,
            time.monotonic() - start
        )
        return response

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(record)
        stored.setdefault('id', str(uuid.uuid4()))
        stored.setdefault('version', 0)
        stored.setdefault('created_at', int(time.time()))
        payload = {
            'id': stored['id'],
            'version': stored['version'],
            'body': stored,
            'created_at': stored['created_at'],
        }
        self._run("insert", table, lambda: self.client.table(table).insert(payload).execute())
        return stored

    async def upsert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        record_id = record.get('id')
        if record_id is None or await self.get(table, record_id) is None:
            return await self.insert(table, record)
        return await self.update(table, record_id, record)

    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        response = self._run(
            "get", table,
            lambda: self.client.table(table).select('*').eq('id', record_id).limit(1).execute()
        )
        if not response.data:
            return None
        return _row_to_record(response.data[0])

    async def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Dict[str, Any]:
        current = await self.get(table, record_id)
        if current is None:
            raise RecordNotFoundError(f"{table}/{record_id} not found")
        if expected_version is not None and current['version'] != expected_version:
            raise ConcurrencyError(
                f"{table}/{record_id} version {current['version']} != expected {expected_version}"
            )

        updated = {**current, **changes}
        updated['id'] = record_id
        updated['version'] = current['version'] + 1
        updated['updated_at'] = int(time.time())
        payload = {'version': updated['version'], 'body': updated, 'updated_at': updated['updated_at']}

        response = self._run(
            "update", table,
            lambda: self.client.table(table)
            .update(payload)
            .eq('id', record_id)
            .eq('version', current['version'])
            .execute()
        )
        if not response.data:
            raise ConcurrencyError(f"{table}/{record_id} changed concurrently")
        return updated

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        def _query():
            q = self.client.table(table).select('*')
            for key, value in (filters or {}).items():
                column = key if key in ('id', 'version') else f"body->>{key}"
                q = q.eq(column, value)
            if order_by:
                field = order_by.lstrip('-')
                column = field if field in ('id', 'version', 'created_at') else f"body->>{field}"
                q = q.order(column, desc=order_by.startswith('-'))
            else:
                q = q.order('created_at')
            if limit is not None:
                q = q.range(offset, offset + limit - 1)
            elif offset:
                q = q.range(offset, 2 ** 31 - 1)
            return q.execute()

        response = self._run("query", table, _query)
        return [_row_to_record(row) for row in (response.data or [])]
