"""
策略实验室配置
回测、评分、门控、调参与压力测试的默认参数
"""
import os
from dotenv import load_dotenv

# 加载 .env 文件
load_dotenv()


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


# ==================== 存储后端 ====================

USE_SUPABASE = os.getenv("USE_SUPABASE", "false").lower() == "true"
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
STORE_PAGE_SIZE = _env_int("STORE_PAGE_SIZE", 1000)   # 分页读取K线的每页条数

# 存储重试
STORE_MAX_RETRIES = _env_int("STORE_MAX_RETRIES", 3)
STORE_BACKOFF_BASE = _env_float("STORE_BACKOFF_BASE", 0.5)  # 秒

# ==================== 回测执行 ====================

INITIAL_CAPITAL = _env_float("INITIAL_CAPITAL", 10000.0)   # 回撤基准权益
DEFAULT_QUANTITY = _env_int("DEFAULT_QUANTITY", 100)       # 每笔固定数量
DEFAULT_LOOKBACK = 40
DEFAULT_ATR_PERIOD = 14
DEFAULT_STOP_ATR_MULT = 1.5
DEFAULT_TAKEPROFIT_ATR_MULT = 2.5
DEFAULT_MAX_TRADES_PER_DAY = 6
DEFAULT_BREAKOUT_PCT = 0.002
DEFAULT_ENTRY_Z = 2.0
DEFAULT_VOLATILITY_THRESHOLD = 0.02
ATR_EPSILON = 1e-12   # ATR 低于该值视为退化数据

# 默认成本模型（每单位）
DEFAULT_COMMISSION_PER_UNIT = _env_float("DEFAULT_COMMISSION_PER_UNIT", 0.01)
DEFAULT_SLIPPAGE_PER_UNIT = _env_float("DEFAULT_SLIPPAGE_PER_UNIT", 0.005)
DEFAULT_FIXED_COST_PER_TRADE = _env_float("DEFAULT_FIXED_COST_PER_TRADE", 0.0)

# ==================== 指标与评分 ====================

PF_SENTINEL = 999.0       # 无亏损时的盈亏比
PF_CEILING = 5.0          # 评分时的盈亏比上限
SHARPE_CEILING = 3.0
RETURN_SCALE = 1000.0     # 净收益归一化尺度（货币单位）
DD_PENALTY_SCALE = 5.0

OBJECTIVE_PF_WEIGHT = 0.35
OBJECTIVE_RETURN_WEIGHT = 0.25
OBJECTIVE_SHARPE_WEIGHT = 0.25
OBJECTIVE_DD_PENALTY = 0.15

# ==================== 变异策略 ====================

MUTATION_SCALE_FACTOR = 0.15     # 数值参数扰动幅度
MUTATION_SUBSET_FACTOR = 0.5     # 每次扰动参数个数比例
MUTATION_DISCRETE_PROB = 0.3     # 布尔/枚举变更概率系数

# ==================== 门控（冠军/挑战者）====================

GATE_MIN_TRADES = 5
GATE_MAX_DRAWDOWN = 0.20
GATE_MIN_IMPROVEMENT = 0.01

# ==================== 前向调参 ====================

WF_MIN_TRADES = 30
WF_MAX_DRAWDOWN = 0.15
WF_IMPROVEMENT_THRESHOLD = 0.03
WF_TEST_REGRESSION_EPS = 0.01
WF_TRAIN_PCT = 0.6
WF_VAL_PCT = 0.2
WF_AGGRESSIVENESS = 0.5
TUNING_BATCH_SIZE = _env_int("TUNING_BATCH_SIZE", 10)
TUNING_MAX_TRIALS = _env_int("TUNING_MAX_TRIALS", 50)
MAX_CONSECUTIVE_FAILURES = 3    # 连续持久化失败次数上限，超过则终止任务
MIN_BARS = 100                  # 调参与压力测试所需最少K线数

# ==================== 压力测试 ====================

STRESS_SLIPPAGE_BPS = (1.0, 3.0)
STRESS_EXTRA_FEE = 1.0
STRESS_GAP_FRACTION = 0.10
STRESS_FEE_RETENTION = 0.5      # 加费后需保留的基线净收益比例
STRESS_DD_MULTIPLIER = 1.5
STRESS_DD_SLACK = 0.05
STRESS_MIN_PASSED = 3

# ==================== 缓存 ====================

BAR_CACHE_TTL = _env_int("BAR_CACHE_TTL", 3600)   # 秒

# ==================== 日志 ====================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
