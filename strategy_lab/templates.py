"""
内置策略模板的参数 Schema
"""
from typing import Any, Dict, List

from strategy_lab.domain.errors import SchemaValidationError
from strategy_lab.domain.models import ParameterSchema

# 各模板共享的执行参数
_EXECUTION_PARAMS: List[Dict[str, Any]] = [
    {"key": "atr_period", "type": "int", "min": 5, "max": 50, "step": 1, "default": 14,
     "label": "ATR Period"},
    {"key": "stop_atr_mult", "type": "float", "min": 0.5, "max": 5.0, "step": 0.1, "default": 1.5,
     "label": "Stop Loss (ATR x)"},
    {"key": "takeprofit_atr_mult", "type": "float", "min": 0.5, "max": 8.0, "step": 0.1, "default": 2.5,
     "label": "Take Profit (ATR x)"},
    {"key": "max_trades_per_day", "type": "int", "min": 1, "max": 20, "step": 1, "default": 6,
     "label": "Max Trades / Day"},
    {"key": "trade_direction", "type": "enum", "values": ["long", "short", "both"], "default": "both",
     "label": "Trade Direction"},
    {"key": "use_trailing_stop", "type": "bool", "default": False, "label": "Trailing Stop"},
]

TEMPLATE_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "momentum_breakout_v1": {
        "params": [
            {"key": "lookback_bars", "type": "int", "min": 10, "max": 200, "step": 1, "default": 40,
             "label": "Lookback Bars"},
            {"key": "breakout_pct", "type": "float", "min": 0.0005, "max": 0.01, "step": 0.0005,
             "default": 0.002, "label": "Breakout %"},
        ] + _EXECUTION_PARAMS,
    },
    "mean_reversion_extremes_v1": {
        "params": [
            {"key": "z_lookback", "type": "int", "min": 10, "max": 200, "step": 1, "default": 40,
             "label": "Z-Score Lookback"},
            {"key": "entry_z", "type": "float", "min": 1.0, "max": 4.0, "step": 0.1, "default": 2.0,
             "label": "Entry Z"},
            {"key": "exit_z", "type": "float", "min": 0.0, "max": 2.0, "step": 0.1, "default": 0.5,
             "label": "Exit Z"},
        ] + _EXECUTION_PARAMS,
    },
    "regime_switcher_v1": {
        "params": [
            {"key": "lookback_bars", "type": "int", "min": 10, "max": 200, "step": 1, "default": 40,
             "label": "Lookback Bars"},
            {"key": "regime_lookback", "type": "int", "min": 20, "max": 300, "step": 5, "default": 100,
             "label": "Regime Lookback"},
            {"key": "trend_strength_threshold", "type": "float", "min": 0.0, "max": 1.0, "step": 0.05,
             "default": 0.5, "label": "Trend Strength"},
            {"key": "volatility_threshold", "type": "float", "min": 0.005, "max": 0.1, "step": 0.005,
             "default": 0.02, "label": "Volatility Threshold"},
        ] + _EXECUTION_PARAMS,
    },
}


def get_template_schema(strategy_variant: str) -> ParameterSchema:
    """获取模板参数 Schema"""
    if strategy_variant not in TEMPLATE_SCHEMAS:
        raise SchemaValidationError(f"No parameter schema for template {strategy_variant!r}")
    return ParameterSchema.from_dict(TEMPLATE_SCHEMAS[strategy_variant])
