"""
Historical Data Provider - Bar readers and DataFrame/CSV conversion
"""
from typing import Dict, List, Optional, Tuple

import pandas as pd

from config import settings
from strategy_lab.domain.interfaces import IBarReader, IRecordStore
from strategy_lab.domain.models import Bar, BarSeries

BAR_COLUMNS = ['timestamp', 'open', 'high', 'low', 'close', 'volume']


def bars_from_frame(df: pd.DataFrame) -> List[Bar]:
    """Convert an OHLCV DataFrame (datetime index or timestamp column) to bars."""
    if df.empty:
        return []
    return BarSeries.from_frame(df).to_bars()


def bars_to_frame(bars: List[Bar]) -> pd.DataFrame:
    """Convert bars to a DataFrame indexed by timestamp."""
    df = pd.DataFrame(
        [[b.timestamp, b.open, b.high, b.low, b.close, b.volume] for b in bars],
        columns=BAR_COLUMNS
    )
    return df.set_index('timestamp')


def load_bars_csv(path: str) -> pd.DataFrame:
    """
    Load bars from a CSV file

    Accepts a ``timestamp``/``ts`` column with ISO strings or epoch milliseconds.

    Returns:
        DataFrame sorted ascending and de-duplicated on timestamp
    """
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    if 'timestamp' not in df.columns and 'ts' in df.columns:
        df = df.rename(columns={'ts': 'timestamp'})
    if pd.api.types.is_numeric_dtype(df['timestamp']):
        df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms')
    else:
        df['timestamp'] = pd.to_datetime(df['timestamp'])
    if 'volume' not in df.columns:
        df['volume'] = 0.0
    df = df.drop_duplicates(subset='timestamp', keep='last').sort_values('timestamp')
    return df.set_index('timestamp')[BAR_COLUMNS[1:]]


def _within(df: pd.DataFrame, start: Optional[str], end: Optional[str]) -> pd.DataFrame:
    if start is not None:
        df = df[df.index >= pd.Timestamp(start)]
    if end is not None:
        df = df[df.index <= pd.Timestamp(end)]
    return df


class FrameBarReader(IBarReader):
    """Serve bars from in-memory DataFrames keyed by (symbol, timeframe)"""

    def __init__(self, frames: Optional[Dict[Tuple[str, str], pd.DataFrame]] = None):
        self.frames = dict(frames or {})

    def add(self, symbol: str, timeframe: str, df: pd.DataFrame) -> None:
        self.frames[(symbol, timeframe)] = df.sort_index()

    async def read_bars(
        self,
        symbol: str,
        timeframe: str,
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> List[Bar]:
        df = self.frames.get((symbol, timeframe))
        if df is None:
            return []
        return bars_from_frame(_within(df, start, end))


class StoreBarReader(IBarReader):
    """Read bars from the ``market_bars`` table page by page"""

    def __init__(self, store: IRecordStore, table: str = 'market_bars', page_size: int = None):
        self.store = store
        self.table = table
        self.page_size = page_size or settings.STORE_PAGE_SIZE

    async def read_bars(
        self,
        symbol: str,
        timeframe: str,
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> List[Bar]:
        rows = []
        offset = 0
        while True:
            page = await self.store.query(
                self.table,
                filters={'symbol': symbol, 'timeframe': timeframe},
                order_by='ts',
                limit=self.page_size,
                offset=offset
            )
            rows.extend(page)
            if len(page) < self.page_size:
                break
            offset += self.page_size

        if not rows:
            return []
        df = pd.DataFrame(rows).rename(columns={'ts': 'timestamp'})
        df['timestamp'] = pd.to_datetime(df['timestamp'])
        if 'volume' not in df.columns:
            df['volume'] = 0.0
        df = df.drop_duplicates(subset='timestamp').sort_values('timestamp').set_index('timestamp')
        return bars_from_frame(_within(df[BAR_COLUMNS[1:]], start, end))
