"""
领域模型
"""
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from config.validator import (
    CostModel, ObjectiveConfig, SplitConfig, WalkForwardConstraints, validate_model,
)
from strategy_lab.domain.errors import SchemaValidationError

PARAM_TYPES = ("int", "float", "bool", "enum")
SNAP_DECIMALS = 10
GRID_TOLERANCE = 1e-6


# ==================== K线 ====================

@dataclass(frozen=True)
class Bar:
    """单根K线"""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class BarSeries:
    """K线序列的 numpy 列视图（只读）"""

    def __init__(self, timestamps: Sequence[datetime], open_, high, low, close, volume=None):
        self.timestamps = list(timestamps)
        self.open = np.asarray(open_, dtype=float)
        self.high = np.asarray(high, dtype=float)
        self.low = np.asarray(low, dtype=float)
        self.close = np.asarray(close, dtype=float)
        self.volume = np.zeros(len(self.close)) if volume is None else np.asarray(volume, dtype=float)
        self._dates = None

    def __len__(self) -> int:
        return len(self.close)

    @property
    def dates(self) -> List[date]:
        """每根K线的日历日期（用于每日交易上限）"""
        if self._dates is None:
            self._dates = [ts.date() for ts in self.timestamps]
        return self._dates

    @classmethod
    def from_bars(cls, bars: Sequence[Bar]) -> "BarSeries":
        return cls(
            [b.timestamp for b in bars],
            [b.open for b in bars],
            [b.high for b in bars],
            [b.low for b in bars],
            [b.close for b in bars],
            [b.volume for b in bars],
        )

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "BarSeries":
        """从 OHLCV DataFrame 构造（时间索引或 timestamp 列）"""
        if 'timestamp' in df.columns:
            timestamps = pd.to_datetime(df['timestamp'])
        else:
            timestamps = pd.to_datetime(df.index.to_series())
        volume = df['volume'].values if 'volume' in df.columns else None
        return cls(
            list(timestamps.dt.to_pydatetime()),
            df['open'].values,
            df['high'].values,
            df['low'].values,
            df['close'].values,
            volume,
        )

    @classmethod
    def coerce(cls, data) -> "BarSeries":
        if isinstance(data, BarSeries):
            return data
        if isinstance(data, pd.DataFrame):
            return cls.from_frame(data)
        return cls.from_bars(list(data))

    def take(self, indices) -> "BarSeries":
        """按下标子集构造新序列（保持顺序）"""
        idx = np.asarray(indices, dtype=int)
        return BarSeries(
            [self.timestamps[i] for i in idx],
            self.open[idx],
            self.high[idx],
            self.low[idx],
            self.close[idx],
            self.volume[idx],
        )

    def slice(self, start: int, end: int) -> "BarSeries":
        return self.take(range(start, end))

    def to_bars(self) -> List[Bar]:
        return [
            Bar(self.timestamps[i], float(self.open[i]), float(self.high[i]),
                float(self.low[i]), float(self.close[i]), float(self.volume[i]))
            for i in range(len(self))
        ]


@dataclass(frozen=True)
class DatasetRef:
    """数据集引用"""
    symbol: str
    timeframe: str
    start: Optional[str] = None
    end: Optional[str] = None

    @property
    def cache_key(self) -> str:
        return f"bars:{self.symbol}:{self.timeframe}:{self.start}:{self.end}"


# ==================== 参数 Schema ====================

@dataclass(frozen=True)
class ParameterDefinition:
    """单个参数的合法取值域"""
    key: str
    type: str
    default: Any = None
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    values: Tuple[Any, ...] = ()
    label: str = ""

    def __post_init__(self):
        if self.type not in PARAM_TYPES:
            raise SchemaValidationError(f"Parameter {self.key}: unknown type {self.type!r}")
        if self.is_numeric:
            if self.min is None or self.max is None:
                raise SchemaValidationError(f"Parameter {self.key}: numeric parameter needs min and max")
            if self.min > self.max:
                raise SchemaValidationError(f"Parameter {self.key}: min {self.min} > max {self.max}")
            if self.step is not None and self.step <= 0:
                raise SchemaValidationError(f"Parameter {self.key}: step must be positive")
        if self.type == "enum" and not self.values:
            raise SchemaValidationError(f"Parameter {self.key}: enum parameter needs values")
        if not self.validate_value(self.default):
            raise SchemaValidationError(f"Parameter {self.key}: default {self.default!r} is outside its domain")

    @property
    def is_numeric(self) -> bool:
        return self.type in ("int", "float")

    @property
    def effective_step(self) -> Optional[float]:
        if self.step is None and self.type == "int":
            return 1
        return self.step

    def _on_grid(self, value: float) -> bool:
        step = self.effective_step
        if not step:
            return True
        k = (value - self.min) / step
        return abs(k - round(k)) <= GRID_TOLERANCE

    def validate_value(self, value: Any) -> bool:
        """校验单个取值是否满足类型/范围/步长/枚举约束"""
        if self.type == "bool":
            return isinstance(value, (bool, np.bool_))
        if self.type == "enum":
            return value in self.values
        if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, float, np.integer, np.floating)):
            return False
        if self.type == "int" and not isinstance(value, (int, np.integer)):
            return False
        if not math.isfinite(value):
            return False
        if value < self.min or value > self.max:
            return False
        return self._on_grid(value)

    def snap(self, value: float):
        """夹紧到 [min, max] 并对齐步长（整数取整，浮点对齐到以 min 为锚点的步长网格）"""
        lo, hi = self.min, self.max
        v = min(max(float(value), lo), hi)
        step = self.effective_step
        if step:
            k = round((v - lo) / step)
            k_max = math.floor((hi - lo) / step + 1e-9)
            k = min(max(k, 0), k_max)
            v = lo + k * step
        if self.type == "int":
            return int(min(max(round(v), math.ceil(lo)), math.floor(hi)))
        return min(max(round(v, SNAP_DECIMALS), lo), hi)

    def normalize_value(self, value: Any) -> Any:
        """把任意取值修正为合法值"""
        if self.validate_value(value):
            return value
        if self.is_numeric:
            try:
                f = float(value)
            except (TypeError, ValueError):
                return self.default
            if not math.isfinite(f) or isinstance(value, bool):
                return self.default
            return self.snap(f)
        return self.default

    def to_dict(self) -> Dict[str, Any]:
        d = {"key": self.key, "type": self.type, "default": self.default}
        if self.is_numeric:
            d.update({"min": self.min, "max": self.max, "step": self.step})
        if self.values:
            d["values"] = list(self.values)
        if self.label:
            d["label"] = self.label
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParameterDefinition":
        if "key" not in data or "type" not in data:
            raise SchemaValidationError(f"Parameter definition needs key and type: {data}")
        return cls(
            key=data["key"],
            type=data["type"],
            default=data.get("default"),
            min=data.get("min"),
            max=data.get("max"),
            step=data.get("step"),
            values=tuple(data.get("values") or data.get("options") or ()),
            label=data.get("label", ""),
        )


@dataclass(frozen=True)
class ParameterSchema:
    """有序参数定义集合"""
    params: Tuple[ParameterDefinition, ...]

    def __post_init__(self):
        keys = [p.key for p in self.params]
        if len(keys) != len(set(keys)):
            raise SchemaValidationError(f"Duplicate parameter keys in schema: {keys}")

    def __iter__(self):
        return iter(self.params)

    def __len__(self) -> int:
        return len(self.params)

    def keys(self) -> List[str]:
        return [p.key for p in self.params]

    def get(self, key: str) -> Optional[ParameterDefinition]:
        for p in self.params:
            if p.key == key:
                return p
        return None

    def defaults(self) -> Dict[str, Any]:
        return {p.key: p.default for p in self.params}

    def validate(self, params: Dict[str, Any]) -> List[str]:
        """返回违反约束的描述列表（空列表表示合法）"""
        errors = []
        for p in self.params:
            if p.key in params and not p.validate_value(params[p.key]):
                errors.append(f"{p.key}={params[p.key]!r}")
        return errors

    def is_valid(self, params: Dict[str, Any]) -> bool:
        return not self.validate(params)

    def normalize(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """补齐缺失参数并修正非法取值，未知键原样保留"""
        out = dict(params or {})
        for p in self.params:
            out[p.key] = p.normalize_value(out[p.key]) if p.key in out else p.default
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {"params": [p.to_dict() for p in self.params]}

    @classmethod
    def from_dict(cls, data) -> "ParameterSchema":
        """支持 {"params": [...]} 或参数定义列表"""
        if isinstance(data, ParameterSchema):
            return data
        if isinstance(data, dict):
            data = data.get("params")
        if not data:
            raise SchemaValidationError("Parameter schema is missing or empty")
        return cls(tuple(ParameterDefinition.from_dict(d) for d in data))


# ==================== 交易与指标 ====================

@dataclass(frozen=True)
class Trade:
    """已平仓交易（仅由执行模拟器创建）"""
    entry_time: datetime
    exit_time: datetime
    side: str  # long|short
    entry_price: float
    exit_price: float
    quantity: int
    pnl_cash: float
    pnl_points: float
    fees: float
    slippage: float
    exit_reason: str  # stop_loss|take_profit|end_of_data

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["entry_time"] = self.entry_time.isoformat()
        d["exit_time"] = self.exit_time.isoformat()
        return d


@dataclass(frozen=True)
class PerformanceMetrics:
    """绩效指标（max_drawdown 为峰值权益的比例）"""
    profit_factor: float = 0.0
    net_pnl: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    max_drawdown: float = 0.0
    trade_count: int = 0
    win_rate: float = 0.0
    avg_trade: float = 0.0
    median_trade: float = 0.0
    fees_total: float = 0.0
    slippage_total: float = 0.0
    max_consecutive_losses: int = 0
    biggest_loss: float = 0.0
    sharpe: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PerformanceMetrics":
        if not data:
            return cls()
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})


# ==================== 门控 ====================

@dataclass(frozen=True)
class GateResult:
    """单个门控检查"""
    name: str
    required: Any
    actual: Any
    passed: bool

    def describe(self) -> str:
        return f"{self.name}: {_fmt(self.actual)} vs {_fmt(self.required)}"


@dataclass(frozen=True)
class GateReport:
    """候选的全部门控结果；整体通过 = 所有门控通过"""
    gates: Tuple[GateResult, ...] = ()

    @property
    def passed(self) -> bool:
        return all(g.passed for g in self.gates)

    def failed(self) -> List[GateResult]:
        return [g for g in self.gates if not g.passed]

    def reject_reason(self) -> Optional[str]:
        failed = self.failed()
        if not failed:
            return None
        return "Failed gates: " + ", ".join(g.describe() for g in failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "gates": [asdict(g) for g in self.gates],
        }


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


# ==================== 迭代与调参记录 ====================

@dataclass(frozen=True)
class Iteration:
    """冠军/挑战者迭代记录（只追加）"""
    sequence_number: int
    parent_params: Dict[str, Any]
    child_params: Dict[str, Any]
    param_diff: Dict[str, Dict[str, Any]]
    gate_report: GateReport
    metrics_before: PerformanceMetrics
    metrics_after: PerformanceMetrics
    accepted: bool
    reject_reason: Optional[str]
    score_before: float = 0.0
    score_after: float = 0.0
    challenger_version_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["gate_report"] = self.gate_report.to_dict()
        return d


@dataclass(frozen=True)
class SplitBounds:
    """时间顺序切分边界：[0, train_end) / [train_end, val_end) / [val_end, total)"""
    train_end: int
    val_end: int
    total: int

    @property
    def ranges(self) -> Dict[str, Tuple[int, int]]:
        return {
            "train": (0, self.train_end),
            "val": (self.train_end, self.val_end),
            "test": (self.val_end, self.total),
        }


@dataclass(frozen=True)
class TuningTrial:
    """前向调参试验记录"""
    trial_number: int
    batch_number: int
    parent_params: Dict[str, Any]
    child_params: Dict[str, Any]
    param_diff: Dict[str, Dict[str, Any]]
    gate_report: GateReport
    train_metrics: PerformanceMetrics
    val_metrics: PerformanceMetrics
    test_metrics: PerformanceMetrics
    train_score: float
    val_score: float
    test_score: float
    split: SplitBounds
    accepted: bool
    reject_reason: Optional[str]
    version_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["gate_report"] = self.gate_report.to_dict()
        return d


# ==================== 压力测试 ====================

@dataclass(frozen=True)
class StressScenario:
    """统一作用于一次回测的扰动"""
    name: str
    cost_perturbation: Dict[str, float] = field(default_factory=dict)  # extra_slippage_bps / extra_fee
    data_perturbation: Dict[str, float] = field(default_factory=dict)  # gap_fraction


@dataclass(frozen=True)
class StressScenarioResult:
    scenario: StressScenario
    metrics: PerformanceMetrics
    check: GateResult


@dataclass(frozen=True)
class StressReport:
    """压力测试报告"""
    baseline: PerformanceMetrics
    results: Tuple[StressScenarioResult, ...]
    tests_passed: int
    tests_total: int
    stress_passed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseline": self.baseline.to_dict(),
            "results": [
                {
                    "scenario": r.scenario.name,
                    "metrics": r.metrics.to_dict(),
                    "check": asdict(r.check),
                }
                for r in self.results
            ],
            "tests_passed": self.tests_passed,
            "tests_total": self.tests_total,
            "stress_passed": self.stress_passed,
        }


# ==================== 冠军指针与任务状态 ====================

@dataclass(frozen=True)
class ChampionState:
    """当前冠军（参数 + 指标 + 分数）"""
    version_id: Optional[str]
    params: Dict[str, Any]
    metrics: PerformanceMetrics
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version_id": self.version_id,
            "params": dict(self.params),
            "metrics": self.metrics.to_dict(),
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ChampionState"]:
        if not data:
            return None
        return cls(
            version_id=data.get("version_id"),
            params=dict(data.get("params") or {}),
            metrics=PerformanceMetrics.from_dict(data.get("metrics")),
            score=float(data.get("score", 0.0)),
        )


@dataclass
class GroupState:
    """冠军/挑战者分组状态，仅由迭代控制器更新"""
    group_id: str
    strategy_variant: str
    schema: ParameterSchema
    bars: Optional[BarSeries]
    cost_model: Any
    objective: Any
    champion: Optional[ChampionState] = None
    mutation_bias: Dict[str, str] = field(default_factory=dict)
    version: int = 0
    iteration_count: int = 0


@dataclass
class JobState:
    """前向调参任务状态（持久化游标）"""
    job_id: str
    group_id: str
    dataset: DatasetRef
    strategy_variant: str
    schema: ParameterSchema
    cost_model: Any
    objective: Any
    constraints: Any
    split: Any
    max_trials: int
    champion: ChampionState
    trials_completed: int = 0
    batch_number: int = 0
    best_score: Optional[float] = None
    baseline: Optional[Dict[str, float]] = None  # train/val/test 基线分数
    status: str = "pending"  # pending|running|completed|failed
    mutation_bias: Dict[str, str] = field(default_factory=dict)
    aggressiveness: float = 0.5
    consecutive_failures: int = 0
    version: int = 0
    error: Optional[str] = None

    @property
    def trials_remaining(self) -> int:
        return max(0, self.max_trials - self.trials_completed)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.job_id,
            "group_id": self.group_id,
            "dataset": asdict(self.dataset),
            "strategy_variant": self.strategy_variant,
            "schema": self.schema.to_dict(),
            "cost_model": self.cost_model.model_dump(),
            "objective": self.objective.model_dump(),
            "constraints": self.constraints.model_dump(),
            "split": self.split.model_dump(),
            "max_trials": self.max_trials,
            "champion": self.champion.to_dict(),
            "trials_completed": self.trials_completed,
            "batch_number": self.batch_number,
            "best_score": self.best_score,
            "baseline": self.baseline,
            "status": self.status,
            "mutation_bias": dict(self.mutation_bias),
            "aggressiveness": self.aggressiveness,
            "consecutive_failures": self.consecutive_failures,
            "version": self.version,
            "error": self.error,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "JobState":
        return cls(
            job_id=record["id"],
            group_id=record.get("group_id", ""),
            dataset=DatasetRef(**record["dataset"]),
            strategy_variant=record["strategy_variant"],
            schema=ParameterSchema.from_dict(record["schema"]),
            cost_model=validate_model(CostModel, record.get("cost_model")),
            objective=validate_model(ObjectiveConfig, record.get("objective")),
            constraints=validate_model(WalkForwardConstraints, record.get("constraints")),
            split=validate_model(SplitConfig, record.get("split")),
            max_trials=int(record["max_trials"]),
            champion=ChampionState.from_dict(record["champion"]),
            trials_completed=int(record.get("trials_completed", 0)),
            batch_number=int(record.get("batch_number", 0)),
            best_score=record.get("best_score"),
            baseline=record.get("baseline"),
            status=record.get("status", "pending"),
            mutation_bias=dict(record.get("mutation_bias") or {}),
            aggressiveness=float(record.get("aggressiveness", 0.5)),
            consecutive_failures=int(record.get("consecutive_failures", 0)),
            version=int(record.get("version", 0)),
            error=record.get("error"),
        )
