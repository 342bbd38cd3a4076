"""
技术指标（向量化计算，供执行模拟器使用）
"""
import numpy as np
import pandas as pd


def calc_true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    """真实波幅：max(高-低, |高-前收|, |低-前收|)，首根K线只取高-低"""
    tr1 = high - low
    tr2 = abs(high - close.shift(1))
    tr3 = abs(low - close.shift(1))
    return pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)


def calc_atr(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 14
) -> pd.Series:
    """计算 ATR 平均真实波幅（截至当前K线的 period 根真实波幅均值）"""
    tr = calc_true_range(high, low, close)
    return tr.rolling(window=period).mean()


def atr_array(high: np.ndarray, low: np.ndarray, close: np.ndarray, period: int) -> np.ndarray:
    """numpy 数组版本，预热期为 NaN"""
    atr = calc_atr(pd.Series(high), pd.Series(low), pd.Series(close), period)
    return atr.to_numpy(dtype=float)
