"""
信号生成器 - 突破 / 均值回归 / 波动率状态切换

每个生成器满足同一契约：generate(bars, index, params) -> TradeSignal，
只使用 index 之前 lookback 根K线和当前收盘价。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from config import settings
from strategy_lab.domain.models import BarSeries


class Signal(Enum):
    """交易信号枚举"""
    LONG = "long"
    SHORT = "short"
    HOLD = "hold"


@dataclass(frozen=True)
class TradeSignal:
    """交易信号数据类"""
    signal: Signal
    strategy: str = ""
    reason: str = ""


HOLD = TradeSignal(Signal.HOLD)


def _first(params: Dict[str, Any], keys, default):
    for key in keys:
        value = params.get(key)
        if value is not None:
            return value
    return default


@dataclass(frozen=True)
class StrategyParams:
    """执行模拟器使用的已解析参数（兼容模板中的别名键）"""
    lookback: int
    atr_period: int
    stop_atr_mult: float
    takeprofit_atr_mult: float
    max_trades_per_day: int
    trade_direction: str
    breakout_pct: float
    entry_z: float
    volatility_threshold: float

    @property
    def warmup(self) -> int:
        return max(self.lookback, self.atr_period) + 1

    @classmethod
    def from_params(cls, params: Optional[Dict[str, Any]]) -> "StrategyParams":
        params = params or {}
        return cls(
            lookback=max(1, int(_first(params, ("lookback_bars", "z_lookback", "lookback"), settings.DEFAULT_LOOKBACK))),
            atr_period=max(1, int(_first(params, ("atr_period",), settings.DEFAULT_ATR_PERIOD))),
            stop_atr_mult=float(_first(params, ("stop_atr_mult", "mr_stop_atr_mult"), settings.DEFAULT_STOP_ATR_MULT)),
            takeprofit_atr_mult=float(_first(
                params, ("takeprofit_atr_mult", "mr_takeprofit_atr_mult"), settings.DEFAULT_TAKEPROFIT_ATR_MULT
            )),
            max_trades_per_day=int(_first(params, ("max_trades_per_day",), settings.DEFAULT_MAX_TRADES_PER_DAY)),
            trade_direction=str(_first(params, ("trade_direction",), "both")),
            breakout_pct=float(_first(params, ("breakout_pct",), settings.DEFAULT_BREAKOUT_PCT)),
            entry_z=float(_first(params, ("entry_z", "mr_entry_z"), settings.DEFAULT_ENTRY_Z)),
            volatility_threshold=float(_first(
                params, ("volatility_threshold",), settings.DEFAULT_VOLATILITY_THRESHOLD
            )),
        )


# ==================== 生成器基类 ====================

class SignalGenerator(ABC):
    """信号生成器基类"""

    name: str = "base"

    @abstractmethod
    def generate(self, bars: BarSeries, index: int, params: StrategyParams) -> TradeSignal:
        """根据 index 之前的回看窗口返回入场信号"""
        pass

    def signal(self, side: Signal, reason: str) -> TradeSignal:
        return TradeSignal(side, self.name, reason)

    @staticmethod
    def window(bars: BarSeries, index: int, lookback: int) -> slice:
        return slice(max(0, index - lookback), index)


# ==================== 突破 ====================

class BreakoutSignal(SignalGenerator):
    """收盘价突破近期高/低点（带百分比缓冲）"""

    name = "breakout"

    def generate(self, bars: BarSeries, index: int, params: StrategyParams) -> TradeSignal:
        w = self.window(bars, index, params.lookback)
        recent_high = bars.high[w].max()
        recent_low = bars.low[w].min()
        close = bars.close[index]
        if close > recent_high * (1 - params.breakout_pct):
            return self.signal(Signal.LONG, "close above recent high band")
        if close < recent_low * (1 + params.breakout_pct):
            return self.signal(Signal.SHORT, "close below recent low band")
        return HOLD


# ==================== 均值回归 ====================

class MeanReversionSignal(SignalGenerator):
    """收盘价相对回看窗口均值的 z-score 超过阈值时反向入场"""

    name = "mean_reversion"

    def generate(self, bars: BarSeries, index: int, params: StrategyParams) -> TradeSignal:
        closes = bars.close[self.window(bars, index, params.lookback)]
        mean = closes.mean()
        std = closes.std()  # 总体标准差
        if std <= 0:
            return HOLD
        z = (bars.close[index] - mean) / std
        if z < -params.entry_z:
            return self.signal(Signal.LONG, f"z={z:.2f}")
        if z > params.entry_z:
            return self.signal(Signal.SHORT, f"z={z:.2f}")
        return HOLD


# ==================== 波动率状态切换 ====================

class RegimeFallbackSignal(SignalGenerator):
    """高波动用均值回归、低波动用突破"""

    name = "regime_fallback"
    mean_band = 0.02
    breakout_band = 0.002

    def generate(self, bars: BarSeries, index: int, params: StrategyParams) -> TradeSignal:
        w = self.window(bars, index, params.lookback)
        recent_high = bars.high[w].max()
        recent_low = bars.low[w].min()
        close = bars.close[index]
        volatility = (recent_high - recent_low) / close if close else 0.0

        if volatility > params.volatility_threshold:
            mean = bars.close[w].mean()
            if close < mean * (1 - self.mean_band):
                return self.signal(Signal.LONG, "high volatility, below mean")
            if close > mean * (1 + self.mean_band):
                return self.signal(Signal.SHORT, "high volatility, above mean")
            return HOLD

        if close > recent_high * (1 - self.breakout_band):
            return self.signal(Signal.LONG, "low volatility breakout up")
        if close < recent_low * (1 + self.breakout_band):
            return self.signal(Signal.SHORT, "low volatility breakout down")
        return HOLD


# ==================== 方向过滤 ====================

def apply_direction_filter(signal: TradeSignal, trade_direction: str) -> TradeSignal:
    """long/short 单向时屏蔽反向信号"""
    if signal.signal == Signal.LONG and trade_direction == "short":
        return HOLD
    if signal.signal == Signal.SHORT and trade_direction == "long":
        return HOLD
    return signal


STRATEGY_MAP: Dict[str, type] = {
    "breakout": BreakoutSignal,
    "mean_reversion": MeanReversionSignal,
    "regime_fallback": RegimeFallbackSignal,
}

# 模板 id 别名
VARIANT_ALIASES: Dict[str, str] = {
    "momentum_breakout_v1": "breakout",
    "mean_reversion_extremes_v1": "mean_reversion",
}


def resolve_variant(strategy_variant: str) -> str:
    """模板 id/别名 -> 生成器名称，未知变体回退到状态切换"""
    name = VARIANT_ALIASES.get(strategy_variant, strategy_variant)
    return name if name in STRATEGY_MAP else "regime_fallback"


def get_signal_generator(strategy_variant: str) -> SignalGenerator:
    """获取信号生成器实例"""
    return STRATEGY_MAP[resolve_variant(strategy_variant)]()
