"""
内存缓存适配器 - 实现IFeatureCache接口
"""
import sys
import time
from typing import Any, Dict, Optional, Tuple

from strategy_lab.domain.interfaces import IFeatureCache


class MemoryCache(IFeatureCache):
    """内存缓存（TTL + 容量上限）"""

    def __init__(self, max_size_mb: int = 100):
        self.max_size_mb = max_size_mb
        self._cache: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._size_bytes = 0

    async def get(self, key: str) -> Optional[Any]:
        """获取缓存"""
        if key not in self._cache:
            return None

        value, expire_at = self._cache[key]

        # 检查是否过期
        if expire_at and time.time() > expire_at:
            await self.delete(key)
            return None

        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """设置缓存"""
        expire_at = time.time() + ttl if ttl else None
        value_size = sys.getsizeof(value)

        if key in self._cache:
            await self.delete(key)

        # 超出容量时清理最旧的缓存
        while self._cache and self._size_bytes + value_size > self.max_size_mb * 1024 * 1024:
            await self._evict_oldest()

        self._cache[key] = (value, expire_at)
        self._size_bytes += value_size

    async def delete(self, key: str) -> None:
        """删除缓存"""
        if key in self._cache:
            value, _ = self._cache.pop(key)
            self._size_bytes -= sys.getsizeof(value)

    async def _evict_oldest(self) -> None:
        key = next(iter(self._cache))
        await self.delete(key)
