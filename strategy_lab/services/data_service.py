"""
数据服务 - 读取K线、缓存并校验数据量
"""
from typing import Optional

from config import settings
from strategy_lab.domain.errors import InsufficientDataError, MissingDatasetError
from strategy_lab.domain.interfaces import IBarReader, IFeatureCache
from strategy_lab.domain.models import BarSeries, DatasetRef
from utils.logger_utils import get_logger

logger = get_logger("strategy_lab.data")


class DataService:
    """数据服务"""

    def __init__(
        self,
        reader: IBarReader,
        cache: Optional[IFeatureCache] = None,
        ttl: int = None
    ):
        self.reader = reader
        self.cache = cache
        self.ttl = settings.BAR_CACHE_TTL if ttl is None else ttl

    async def get_bars(self, dataset: DatasetRef, min_bars: int = 0) -> BarSeries:
        """
        获取数据集K线（优先读缓存）

        Args:
            dataset: 数据集引用
            min_bars: 最少K线数

        Raises:
            MissingDatasetError: 数据集为空
            InsufficientDataError: K线数量不足
        """
        series = None
        if self.cache is not None:
            series = await self.cache.get(dataset.cache_key)

        if series is None:
            bars = await self.reader.read_bars(dataset.symbol, dataset.timeframe, dataset.start, dataset.end)
            if not bars:
                raise MissingDatasetError(
                    f"No bars for {dataset.symbol} {dataset.timeframe} [{dataset.start}, {dataset.end}]"
                )
            series = BarSeries.from_bars(bars)
            logger.info("读取K线 %s %s bars=%s", dataset.symbol, dataset.timeframe, len(series))
            if self.cache is not None:
                await self.cache.set(dataset.cache_key, series, ttl=self.ttl)

        if len(series) < min_bars:
            raise InsufficientDataError(
                f"Need at least {min_bars} bars, dataset {dataset.symbol} {dataset.timeframe} has {len(series)}"
            )
        return series
