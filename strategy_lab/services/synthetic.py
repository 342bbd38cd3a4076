"""
模拟交易生成（无真实K线时的演示兜底）

结果不可复现，不能用于冠军/挑战者或调参比较。
"""
import random
from datetime import datetime, timedelta
from typing import List, Optional

from config import settings
from config.validator import CostModel, validate_model
from strategy_lab.domain.models import Trade


def generate_synthetic_trades(
    cost_model=None,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None
) -> List[Trade]:
    """生成 20-49 笔随机交易（略偏正收益）"""
    rng = rng or random.Random()
    costs = validate_model(CostModel, cost_model)
    quantity = settings.DEFAULT_QUANTITY
    base_time = (now or datetime.now()) - timedelta(days=30)

    trades = []
    for i in range(rng.randint(20, 49)):
        entry_time = base_time + timedelta(hours=4 * i)
        side = "long" if rng.random() > 0.5 else "short"
        entry_price = 450 + rng.random() * 50
        pnl_points = (rng.random() - 0.4) * 5
        exit_price = entry_price + pnl_points if side == "long" else entry_price - pnl_points
        fees = costs.commission_per_unit * quantity + costs.fixed_cost_per_trade
        slippage = costs.slippage_per_unit * quantity
        trades.append(Trade(
            entry_time=entry_time,
            exit_time=entry_time + timedelta(hours=2),
            side=side,
            entry_price=entry_price,
            exit_price=exit_price,
            quantity=quantity,
            pnl_cash=pnl_points * quantity - fees - slippage,
            pnl_points=pnl_points,
            fees=fees,
            slippage=slippage,
            exit_reason="take_profit" if pnl_points > 0 else "stop_loss",
        ))
    return trades
