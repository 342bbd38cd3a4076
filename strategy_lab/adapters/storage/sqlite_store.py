"""
SQLite适配器 - 实现IRecordStore接口

所有实体存放在同一张 records 表，正文为 JSON，version 列做乐观锁。
"""
import json
import sqlite3
import time
import uuid
from typing import Any, Dict, List, Optional

from config import paths
from strategy_lab.domain.errors import (
    ConcurrencyError,
    RecordNotFoundError,
    StoreError,
    TransientStoreError,
)
from strategy_lab.domain.interfaces import IRecordStore
from utils.logger_utils import get_logger

_logger = get_logger("sqlite.store")


class SQLiteRecordStore(IRecordStore):
    """SQLite存储适配器"""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or paths.SQLITE_DB_PATH
        self._init_db()

    def _get_conn(self):
        """获取数据库连接（WAL模式）"""
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def _init_db(self):
        """初始化数据库Schema"""
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                tbl TEXT NOT NULL,
                id TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 0,
                body TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER,
                PRIMARY KEY (tbl, id)
            );

            CREATE INDEX IF NOT EXISTS idx_records_tbl_created
            ON records(tbl, created_at);
        """)
        conn.commit()
        conn.close()

    def _execute(self, fn):
        conn = self._get_conn()
        try:
            result = fn(conn)
            conn.commit()
            return result
        except sqlite3.OperationalError as e:
            # database is locked / busy
            raise TransientStoreError(f"SQLite operational error: {e}", raw_error=e)
        finally:
            conn.close()

    @staticmethod
    def _load(row) -> Dict[str, Any]:
        body = json.loads(row[0])
        body['version'] = row[1]
        return body

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(record)
        stored.setdefault('id', str(uuid.uuid4()))
        stored.setdefault('version', 0)
        stored.setdefault('created_at', int(time.time()))

        def _insert(conn):
            try:
                conn.execute(
                    "INSERT INTO records (tbl, id, version, body, created_at) VALUES (?, ?, ?, ?, ?)",
                    (table, stored['id'], stored['version'], json.dumps(stored, default=str),
                     stored['created_at'])
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Duplicate id {stored['id']} in {table}", raw_error=e)

        self._execute(_insert)
        _logger.debug("SQLite insert ok table=%s id=%s", table, stored['id'])
        return stored

    async def upsert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        record_id = record.get('id')
        if record_id is None or await self.get(table, record_id) is None:
            return await self.insert(table, record)
        return await self.update(table, record_id, record)

    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        def _get(conn):
            return conn.execute(
                "SELECT body, version FROM records WHERE tbl = ? AND id = ?",
                (table, record_id)
            ).fetchone()

        row = self._execute(_get)
        return self._load(row) if row else None

    async def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Dict[str, Any]:
        def _update(conn):
            row = conn.execute(
                "SELECT body, version FROM records WHERE tbl = ? AND id = ?",
                (table, record_id)
            ).fetchone()
            if row is None:
                raise RecordNotFoundError(f"{table}/{record_id} not found")
            current = self._load(row)
            if expected_version is not None and current['version'] != expected_version:
                raise ConcurrencyError(
                    f"{table}/{record_id} version {current['version']} != expected {expected_version}"
                )
            updated = {**current, **changes}
            updated['id'] = record_id
            updated['version'] = current['version'] + 1
            updated['updated_at'] = int(time.time())
            cursor = conn.execute(
                "UPDATE records SET body = ?, version = ?, updated_at = ? "
                "WHERE tbl = ? AND id = ? AND version = ?",
                (json.dumps(updated, default=str), updated['version'], updated['updated_at'],
                 table, record_id, current['version'])
            )
            if cursor.rowcount == 0:
                raise ConcurrencyError(f"{table}/{record_id} changed concurrently")
            return updated

        return self._execute(_update)

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        def _query(conn):
            sql = "SELECT body, version FROM records WHERE tbl = ?"
            args: List[Any] = [table]
            for key, value in (filters or {}).items():
                sql += " AND json_extract(body, ?) = ?"
                args.extend([f"$.{key}", value])
            if order_by:
                field = order_by.lstrip('-')
                direction = "DESC" if order_by.startswith('-') else "ASC"
                sql += f" ORDER BY json_extract(body, ?) {direction}"
                args.append(f"$.{field}")
            else:
                sql += " ORDER BY created_at ASC, rowid ASC"
            if limit is not None or offset:
                sql += " LIMIT ? OFFSET ?"
                args.extend([limit if limit is not None else -1, offset])
            return conn.execute(sql, args).fetchall()

        return [self._load(row) for row in self._execute(_query)]
