"""
配置验证模块 - 使用 Pydantic 进行类型安全验证

成本模型、评分权重、门控约束、前向切分与压力测试阈值
"""
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from typing import Any, Dict, Optional, Type, TypeVar

from config import settings
from strategy_lab.domain.errors import ConfigurationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class CostModel(BaseModel):
    """成本模型（按单位计）"""
    commission_per_unit: float = Field(settings.DEFAULT_COMMISSION_PER_UNIT, ge=0.0, description="每单位佣金")
    slippage_per_unit: float = Field(settings.DEFAULT_SLIPPAGE_PER_UNIT, ge=0.0, description="每单位滑点")
    fixed_cost_per_trade: float = Field(settings.DEFAULT_FIXED_COST_PER_TRADE, ge=0.0, description="每笔固定费用")


class ObjectiveConfig(BaseModel):
    """多目标评分权重（无需归一化）"""
    pf_weight: float = Field(settings.OBJECTIVE_PF_WEIGHT, ge=0.0)
    return_weight: float = Field(settings.OBJECTIVE_RETURN_WEIGHT, ge=0.0)
    sharpe_weight: float = Field(settings.OBJECTIVE_SHARPE_WEIGHT, ge=0.0)
    dd_penalty: float = Field(settings.OBJECTIVE_DD_PENALTY, ge=0.0)
    return_scale: float = Field(settings.RETURN_SCALE, gt=0.0, description="净收益归一化尺度")


class GateConstraints(BaseModel):
    """冠军/挑战者门控约束"""
    min_trades: int = Field(settings.GATE_MIN_TRADES, ge=0)
    max_dd: float = Field(settings.GATE_MAX_DRAWDOWN, ge=0.0, le=1.0, description="最大回撤（峰值权益比例）")
    min_improvement: float = Field(settings.GATE_MIN_IMPROVEMENT, ge=0.0, description="相对基线的最小提升")


class StopConditions(GateConstraints):
    """迭代批次的停止条件"""
    stop_on_failure: bool = Field(False, description="首次拒绝即停止")


class WalkForwardConstraints(BaseModel):
    """前向调参门控约束"""
    min_trades: int = Field(settings.WF_MIN_TRADES, ge=0)
    max_dd: float = Field(settings.WF_MAX_DRAWDOWN, ge=0.0, le=1.0)
    improvement_threshold: float = Field(settings.WF_IMPROVEMENT_THRESHOLD, ge=0.0)
    test_regression_eps: float = Field(settings.WF_TEST_REGRESSION_EPS, ge=0.0, le=1.0)


class SplitConfig(BaseModel):
    """训练/验证/测试切分比例，剩余部分为测试集"""
    train_pct: float = Field(settings.WF_TRAIN_PCT, gt=0.0, lt=1.0)
    val_pct: float = Field(settings.WF_VAL_PCT, gt=0.0, lt=1.0)

    @model_validator(mode="after")
    def validate_total(self):
        """验证比例之和不超过1"""
        if self.train_pct + self.val_pct > 1.0:
            raise ValueError(
                f"train_pct + val_pct 不能超过 1.0，当前: {self.train_pct + self.val_pct:.3f}"
            )
        return self

    @property
    def test_pct(self) -> float:
        return max(0.0, 1.0 - self.train_pct - self.val_pct)


class StressThresholds(BaseModel):
    """压力测试场景与通过阈值"""
    slippage_bps: tuple = Field(settings.STRESS_SLIPPAGE_BPS, description="两档额外滑点（基点）")
    extra_fee: float = Field(settings.STRESS_EXTRA_FEE, ge=0.0)
    gap_fraction: float = Field(settings.STRESS_GAP_FRACTION, ge=0.0, lt=1.0)
    fee_retention: float = Field(settings.STRESS_FEE_RETENTION, ge=0.0)
    dd_multiplier: float = Field(settings.STRESS_DD_MULTIPLIER, ge=0.0)
    dd_slack: float = Field(settings.STRESS_DD_SLACK, ge=0.0)
    min_passed: int = Field(settings.STRESS_MIN_PASSED, ge=1, le=4)

    @field_validator("slippage_bps")
    @classmethod
    def validate_slippage_bps(cls, v):
        """验证滑点档位为两个非负值"""
        v = tuple(float(x) for x in v)
        if len(v) != 2 or any(x < 0 for x in v):
            raise ValueError(f"slippage_bps 必须是两个非负值，当前: {v}")
        return v


def validate_model(model_cls: Type[ModelT], data: Optional[Any]) -> ModelT:
    """
    将字典（或已构造的模型）校验为配置模型

    Args:
        model_cls: Pydantic 模型类
        data: dict / 模型实例 / None（使用默认值）

    Returns:
        模型实例

    Raises:
        ConfigurationError: 校验失败
    """
    if isinstance(data, model_cls):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model_cls(**(data or {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {model_cls.__name__}: {e}", raw_error=e)


def dump_model(model: BaseModel) -> Dict[str, Any]:
    """模型转字典（用于持久化）"""
    return model.model_dump(mode="json")
