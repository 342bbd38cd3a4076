"""
多目标评分
"""
from config import settings
from config.validator import ObjectiveConfig, validate_model
from strategy_lab.domain.models import PerformanceMetrics


def _clamp01(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def score(metrics: PerformanceMetrics, objective_config=None) -> float:
    """
    绩效指标 -> 标量分数（越高越好，可为负）

    盈亏比截断到 PF_CEILING，收益/夏普代理归一化到 [0, 1]，
    回撤按 dd*5 封顶为 1 后乘以惩罚权重。
    """
    cfg = validate_model(ObjectiveConfig, objective_config)

    pf_term = min(metrics.profit_factor, settings.PF_CEILING) / settings.PF_CEILING
    return_term = _clamp01(metrics.net_pnl / cfg.return_scale)
    sharpe_term = _clamp01(metrics.sharpe / settings.SHARPE_CEILING)
    dd_term = min(metrics.max_drawdown * settings.DD_PENALTY_SCALE, 1.0)

    return (
        cfg.pf_weight * pf_term
        + cfg.return_weight * return_term
        + cfg.sharpe_weight * sharpe_term
        - cfg.dd_penalty * dd_term
    )
