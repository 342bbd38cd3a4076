"""
领域模型与配置验证单元测试
"""

import pytest

from config.validator import CostModel, SplitConfig, StressThresholds, validate_model
from strategy_lab.domain.errors import ConfigurationError, SchemaValidationError
from strategy_lab.domain.models import ParameterDefinition, ParameterSchema
from strategy_lab.templates import TEMPLATE_SCHEMAS, get_template_schema


class TestParameterDefinition:
    """ParameterDefinition 测试类"""

    def test_invalid_definitions(self):
        with pytest.raises(SchemaValidationError):
            ParameterDefinition("x", "int", default=5, min=10, max=1)
        with pytest.raises(SchemaValidationError):
            ParameterDefinition("x", "float", default=1.0)
        with pytest.raises(SchemaValidationError):
            ParameterDefinition("x", "enum", default="a")
        with pytest.raises(SchemaValidationError):
            ParameterDefinition("x", "string", default="a")
        with pytest.raises(SchemaValidationError):
            ParameterDefinition("x", "int", default=50, min=0, max=10)

    def test_validate_value(self):
        p = ParameterDefinition("n", "int", default=10, min=5, max=50, step=5)

        assert p.validate_value(15)
        assert not p.validate_value(12)
        assert not p.validate_value(55)
        assert not p.validate_value(15.0)
        assert not p.validate_value(True)

    def test_snap_float_grid(self):
        p = ParameterDefinition("stop", "float", default=1.5, min=0.5, max=5.0, step=0.1)

        assert p.snap(1.83) == pytest.approx(1.8)
        assert p.validate_value(p.snap(1.83))
        assert p.snap(9.9) == 5.0
        assert p.snap(-3) == 0.5

    def test_snap_int(self):
        p = ParameterDefinition("n", "int", default=10, min=5, max=50, step=5)

        assert p.snap(17.4) == 15
        assert isinstance(p.snap(17.4), int)
        assert p.snap(49) == 50


class TestParameterSchema:
    """ParameterSchema 测试类"""

    def test_defaults_and_keys(self, mixed_schema):
        assert mixed_schema.keys() == ["lookback", "period", "stop", "ratio", "trail", "direction"]
        assert mixed_schema.defaults()["direction"] == "both"

    def test_duplicate_keys(self):
        with pytest.raises(SchemaValidationError):
            ParameterSchema.from_dict([
                {"key": "a", "type": "bool", "default": True},
                {"key": "a", "type": "bool", "default": False},
            ])

    def test_empty_schema(self):
        with pytest.raises(SchemaValidationError):
            ParameterSchema.from_dict({"params": []})

    def test_normalize(self, mixed_schema):
        params = mixed_schema.normalize({"lookback": 23, "trail": "yes", "unknown": 1})

        assert params["lookback"] == 25
        assert params["trail"] is False
        assert params["period"] == 3
        assert params["unknown"] == 1
        assert mixed_schema.is_valid(params)

    def test_round_trip_dict(self, mixed_schema):
        assert ParameterSchema.from_dict(mixed_schema.to_dict()) == mixed_schema

    def test_validate_reports_errors(self, mixed_schema):
        errors = mixed_schema.validate({"lookback": 7, "direction": "up"})

        assert len(errors) == 2


class TestTemplates:

    @pytest.mark.parametrize("variant", sorted(TEMPLATE_SCHEMAS))
    def test_template_defaults_valid(self, variant):
        schema = get_template_schema(variant)

        assert schema.is_valid(schema.defaults())

    def test_unknown_template(self):
        with pytest.raises(SchemaValidationError):
            get_template_schema("nope")


class TestConfigModels:
    """配置验证测试"""

    def test_cost_model_negative(self):
        with pytest.raises(ConfigurationError):
            validate_model(CostModel, {"commission_per_unit": -1})

    def test_split_sum(self):
        with pytest.raises(ConfigurationError):
            validate_model(SplitConfig, {"train_pct": 0.8, "val_pct": 0.3})
        assert validate_model(SplitConfig, None).test_pct == pytest.approx(0.2)

    def test_stress_slippage_pair(self):
        with pytest.raises(ConfigurationError):
            validate_model(StressThresholds, {"slippage_bps": [1.0]})

    def test_instance_passthrough(self):
        cost = CostModel(commission_per_unit=0.5)

        assert validate_model(CostModel, cost) is cost
