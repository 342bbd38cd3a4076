"""
变异策略 - 在参数 Schema 合法域内扰动当前参数
"""
import math
import random
from typing import Any, Dict, Optional

from config import settings
from strategy_lab.domain.errors import ConfigurationError
from strategy_lab.domain.models import ParameterSchema

POSITIVE_BIAS = ("higher", "wider")
NEGATIVE_BIAS = ("lower", "tighter")


class MutationPolicy:
    """参数变异器"""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        scale_factor: float = settings.MUTATION_SCALE_FACTOR,
        subset_factor: float = settings.MUTATION_SUBSET_FACTOR,
        discrete_prob: float = settings.MUTATION_DISCRETE_PROB
    ):
        """
        Args:
            rng: 随机源（测试时传入带种子的 Random）
            scale_factor: 数值扰动幅度系数
            subset_factor: 扰动参数个数系数
            discrete_prob: 布尔/枚举变更概率系数
        """
        self.rng = rng or random.Random()
        self.scale_factor = scale_factor
        self.subset_factor = subset_factor
        self.discrete_prob = discrete_prob

    def mutate(
        self,
        current_params: Dict[str, Any],
        schema: ParameterSchema,
        aggressiveness: float,
        bias: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        生成候选参数集

        Args:
            current_params: 当前参数（非法值先被修正）
            schema: 参数 Schema
            aggressiveness: 激进程度 [0, 1]，越大扰动的参数越多、幅度越大
            bias: 可选方向提示 {key: higher|lower|tighter|wider}，只影响数值扰动的符号

        Returns:
            满足 Schema 约束的新参数集
        """
        if not 0.0 <= aggressiveness <= 1.0:
            raise ConfigurationError(f"aggressiveness must be within [0, 1], got {aggressiveness}")
        bias = bias or {}

        child = schema.normalize(current_params)
        keys = schema.keys()
        if not keys:
            return child

        count = min(len(keys), max(1, math.floor(len(keys) * aggressiveness * self.subset_factor)))
        shuffled = list(keys)
        self.rng.shuffle(shuffled)

        for key in shuffled[:count]:
            definition = schema.get(key)
            value = child[key]

            if definition.is_numeric:
                span = definition.max - definition.min
                delta = self.rng.uniform(-1.0, 1.0) * span * aggressiveness * self.scale_factor
                direction = bias.get(key)
                if direction in POSITIVE_BIAS:
                    delta = abs(delta)
                elif direction in NEGATIVE_BIAS:
                    delta = -abs(delta)
                child[key] = definition.snap(value + delta)

            elif definition.type == "bool":
                if self.rng.random() < self._discrete_probability(aggressiveness):
                    child[key] = not value

            elif definition.type == "enum":
                if self.rng.random() < self._discrete_probability(aggressiveness):
                    child[key] = self.rng.choice(list(definition.values))

        return child

    def _discrete_probability(self, aggressiveness: float) -> float:
        return min(1.0, aggressiveness * self.discrete_prob)


def param_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """参数差异 {key: {before, after}}"""
    diff = {}
    for key in sorted(set(before) | set(after)):
        if before.get(key) != after.get(key):
            diff[key] = {"before": before.get(key), "after": after.get(key)}
    return diff
