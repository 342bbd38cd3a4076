"""
Repository Factory - 根据环境变量选择存储后端
"""
from typing import Optional

from config import settings
from strategy_lab.adapters.storage.sqlite_store import SQLiteRecordStore
from strategy_lab.adapters.storage.supabase_store import SupabaseRecordStore
from strategy_lab.domain.interfaces import IRecordStore


def get_record_store(db_path: Optional[str] = None) -> IRecordStore:
    """
    获取 RecordStore 实例

    根据环境变量 USE_SUPABASE 选择实现:
    - USE_SUPABASE=true: 使用 Supabase
    - 其他: 使用 SQLite (默认)
    """
    if settings.USE_SUPABASE:
        return SupabaseRecordStore()
    if db_path:
        return SQLiteRecordStore(db_path)
    return SQLiteRecordStore()
