"""
变异策略单元测试
"""

import random

import pytest

from strategy_lab.domain.errors import ConfigurationError
from strategy_lab.domain.models import ParameterSchema
from strategy_lab.optimization.mutation import MutationPolicy, param_diff


class TestMutationPolicy:
    """MutationPolicy 测试类"""

    def test_output_always_valid(self, mixed_schema, seeded_policy):
        """10000 次变异输出都满足 Schema 约束"""
        rng = random.Random(7)
        params = mixed_schema.defaults()
        for _ in range(10000):
            params = seeded_policy.mutate(params, mixed_schema, rng.random())
            assert mixed_schema.validate(params) == []
            assert set(params) == set(mixed_schema.keys())

    def test_template_schema_valid(self, breakout_schema, seeded_policy):
        params = breakout_schema.defaults()
        for _ in range(2000):
            params = seeded_policy.mutate(params, breakout_schema, 1.0)
            assert breakout_schema.is_valid(params)

    def test_reproducible_with_seed(self, mixed_schema):
        a = MutationPolicy(rng=random.Random(3)).mutate(mixed_schema.defaults(), mixed_schema, 0.8)
        b = MutationPolicy(rng=random.Random(3)).mutate(mixed_schema.defaults(), mixed_schema, 0.8)

        assert a == b

    def test_subset_size(self, mixed_schema):
        """激进程度为 0 时至多改动一个参数"""
        policy = MutationPolicy(rng=random.Random(11))
        for _ in range(200):
            child = policy.mutate(mixed_schema.defaults(), mixed_schema, 0.0)
            assert len(param_diff(mixed_schema.defaults(), child)) <= 1

    def test_bias_higher(self):
        """higher 偏置只向上扰动"""
        schema = ParameterSchema.from_dict([
            {"key": "x", "type": "float", "min": 0.0, "max": 100.0, "default": 50.0},
        ])
        policy = MutationPolicy(rng=random.Random(5))
        for _ in range(500):
            child = policy.mutate({"x": 50.0}, schema, 1.0, {"x": "higher"})
            assert child["x"] >= 50.0

    def test_bias_tighter(self):
        """tighter 偏置只向下扰动"""
        schema = ParameterSchema.from_dict([
            {"key": "n", "type": "int", "min": 1, "max": 1000, "default": 500},
        ])
        policy = MutationPolicy(rng=random.Random(5))
        for _ in range(500):
            child = policy.mutate({"n": 500}, schema, 1.0, {"n": "tighter"})
            assert child["n"] <= 500

    def test_invalid_input_normalized(self, mixed_schema, seeded_policy):
        """非法输入先被修正，未知键保留"""
        child = seeded_policy.mutate(
            {"lookback": 1000, "stop": "abc", "direction": "sideways", "extra": 1},
            mixed_schema, 0.1
        )

        assert mixed_schema.is_valid(child)
        assert child["extra"] == 1

    def test_aggressiveness_out_of_range(self, mixed_schema, seeded_policy):
        with pytest.raises(ConfigurationError):
            seeded_policy.mutate(mixed_schema.defaults(), mixed_schema, 1.5)

    def test_discrete_values_change(self):
        """布尔与枚举在最大激进程度下会被改动"""
        schema = ParameterSchema.from_dict([
            {"key": "flag", "type": "bool", "default": False},
            {"key": "mode", "type": "enum", "values": ["a", "b", "c"], "default": "a"},
        ])
        policy = MutationPolicy(rng=random.Random(1), discrete_prob=1.0, subset_factor=1.0)
        children = [policy.mutate(schema.defaults(), schema, 1.0) for _ in range(50)]

        assert all(c["flag"] is True for c in children)
        assert any(c["mode"] != "a" for c in children)


class TestParamDiff:
    """param_diff 测试"""

    def test_diff(self):
        diff = param_diff({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4})

        assert diff == {"b": {"before": 2, "after": 3}, "c": {"before": None, "after": 4}}

    def test_no_diff(self):
        assert param_diff({"a": 1}, {"a": 1}) == {}
