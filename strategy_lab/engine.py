"""
Backtest Engine - Execution simulator
"""
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from config import settings
from config.validator import CostModel, validate_model
from strategy_lab.domain.models import BarSeries, PerformanceMetrics, Trade
from strategy_lab.indicators import atr_array
from strategy_lab.services.metrics_calculator import MetricsCalculator
from strategy_lab.strategies import (
    Signal,
    StrategyParams,
    apply_direction_filter,
    get_signal_generator,
)

BPS = 10000.0


def apply_data_perturbation(bars: BarSeries, data_perturbation: Optional[Dict[str, Any]]) -> BarSeries:
    """Drop the bars listed under ``removed_indices`` (order is preserved)."""
    if not data_perturbation:
        return bars
    removed = set(int(i) for i in data_perturbation.get("removed_indices", ()))
    if not removed:
        return bars
    return bars.take([i for i in range(len(bars)) if i not in removed])


def simulate(
    bars,
    parameter_set: Dict[str, Any],
    strategy_variant: str,
    cost_model=None,
    extra_cost_perturbation: Optional[Dict[str, float]] = None,
    data_perturbation: Optional[Dict[str, Any]] = None
) -> List[Trade]:
    """
    Walk the bars once and emit closed trades

    Args:
        bars: BarSeries, list of Bar or OHLCV DataFrame (ascending)
        parameter_set: strategy parameters, unknown keys are ignored
        strategy_variant: template id or generator name
        cost_model: CostModel or dict
        extra_cost_perturbation: {"extra_slippage_bps", "extra_fee"} added to every closed trade
        data_perturbation: {"removed_indices": [...]} bars removed before the run

    Returns:
        Trades in chronological order. Identical inputs give identical output.
    """
    series = apply_data_perturbation(BarSeries.coerce(bars), data_perturbation)
    costs = validate_model(CostModel, cost_model)
    params = StrategyParams.from_params(parameter_set)
    generator = get_signal_generator(strategy_variant)
    extra = extra_cost_perturbation or {}
    extra_slippage_bps = float(extra.get("extra_slippage_bps", 0.0))
    extra_fee = float(extra.get("extra_fee", 0.0))
    quantity = settings.DEFAULT_QUANTITY

    n = len(series)
    trades: List[Trade] = []
    if n <= params.warmup:
        return trades

    atr = atr_array(series.high, series.low, series.close, params.atr_period)

    def close_position(position: Dict[str, Any], index: int, reason: str) -> Trade:
        exit_price = float(series.close[index])
        if position['side'] == 'long':
            pnl_points = exit_price - position['entry_price']
        else:
            pnl_points = position['entry_price'] - exit_price
        fees = costs.commission_per_unit * quantity + costs.fixed_cost_per_trade + extra_fee
        slippage = (costs.slippage_per_unit * quantity
                    + extra_slippage_bps / BPS * position['entry_price'] * quantity)
        return Trade(
            entry_time=position['entry_time'],
            exit_time=series.timestamps[index],
            side=position['side'],
            entry_price=position['entry_price'],
            exit_price=exit_price,
            quantity=quantity,
            pnl_cash=pnl_points * quantity - fees - slippage,
            pnl_points=pnl_points,
            fees=fees,
            slippage=slippage,
            exit_reason=reason,
        )

    position = None
    current_day = None
    day_entries = 0

    for i in range(params.warmup, n):
        day = series.dates[i]
        if day != current_day:
            current_day = day
            day_entries = 0

        bar_atr = atr[i]
        if not np.isfinite(bar_atr) or bar_atr <= settings.ATR_EPSILON:
            continue

        close = series.close[i]

        if position is not None:
            if position['side'] == 'long':
                pnl_points = close - position['entry_price']
            else:
                pnl_points = position['entry_price'] - close

            # stop first: a bar beyond both bands is a stop-loss
            if pnl_points <= -params.stop_atr_mult * bar_atr:
                trades.append(close_position(position, i, 'stop_loss'))
                position = None
            elif pnl_points >= params.takeprofit_atr_mult * bar_atr:
                trades.append(close_position(position, i, 'take_profit'))
                position = None

        if position is None and day_entries < params.max_trades_per_day:
            signal = apply_direction_filter(
                generator.generate(series, i, params), params.trade_direction
            )
            if signal.signal in (Signal.LONG, Signal.SHORT):
                position = {
                    'side': signal.signal.value,
                    'entry_price': float(close),
                    'entry_time': series.timestamps[i],
                }
                day_entries += 1

    if position is not None:
        trades.append(close_position(position, n - 1, 'end_of_data'))

    return trades


def run_backtest(
    bars,
    parameter_set: Dict[str, Any],
    strategy_variant: str,
    cost_model=None
) -> Tuple[List[Trade], PerformanceMetrics]:
    """Simulate and aggregate in one call."""
    trades = simulate(bars, parameter_set, strategy_variant, cost_model)
    return trades, MetricsCalculator.aggregate(trades)
