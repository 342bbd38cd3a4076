"""
pytest 配置文件

提供测试 fixtures 和配置。
"""

import random
from datetime import datetime, timedelta

import pandas as pd
import pytest

from strategy_lab.adapters.storage.memory_store import MemoryRecordStore
from strategy_lab.domain.models import Bar, BarSeries, ParameterSchema
from strategy_lab.optimization.mutation import MutationPolicy
from strategy_lab.templates import get_template_schema

START = datetime(2024, 1, 2)


def make_bars(closes, spread=0.05, start=START, step=timedelta(minutes=5)):
    """按收盘价序列生成K线（high/low = close ± spread）"""
    return BarSeries.from_bars([
        Bar(start + i * step, c, c + spread, c - spread, c, 1000.0)
        for i, c in enumerate(closes)
    ])


def breakout_closes(flat=100, trend=100, level=100.0, slope=0.5):
    """先横盘再单边上涨"""
    return [level] * flat + [level + slope * (k + 1) for k in range(trend)]


def bars_to_df(series: BarSeries) -> pd.DataFrame:
    df = pd.DataFrame({
        'open': series.open,
        'high': series.high,
        'low': series.low,
        'close': series.close,
        'volume': series.volume,
    }, index=pd.DatetimeIndex(series.timestamps, name='timestamp'))
    return df


@pytest.fixture
def breakout_bars():
    """100 根横盘 + 100 根上涨（同一天内的 5 分钟K线）"""
    return make_bars(breakout_closes())


@pytest.fixture
def breakout_schema():
    return get_template_schema("momentum_breakout_v1")


@pytest.fixture
def mixed_schema():
    """覆盖 int/float/bool/enum 四种类型的 Schema"""
    return ParameterSchema.from_dict({"params": [
        {"key": "lookback", "type": "int", "min": 5, "max": 100, "step": 5, "default": 20},
        {"key": "period", "type": "int", "min": 2, "max": 9, "default": 3},
        {"key": "stop", "type": "float", "min": 0.5, "max": 5.0, "step": 0.1, "default": 1.5},
        {"key": "ratio", "type": "float", "min": 0.0, "max": 1.0, "default": 0.3},
        {"key": "trail", "type": "bool", "default": False},
        {"key": "direction", "type": "enum", "values": ["long", "short", "both"], "default": "both"},
    ]})


@pytest.fixture
def memory_store():
    return MemoryRecordStore()


@pytest.fixture
def seeded_policy():
    return MutationPolicy(rng=random.Random(42))


@pytest.fixture
def bar_factory():
    return make_bars


@pytest.fixture
def frame_factory():
    return bars_to_df
