"""
Tests for the auto-scaling data model
"""

import math
import pytest
from datetime import datetime, timezone

from autoscaling.models import (
    Aggregation, ComparisonOperator, MetricSample, ResourcePool, ScalingAction,
    ScalingActionConfig, ScalingCondition, ScalingEvent, ScalingRule, ScalingTrigger,
    normalize_pool
)


NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestResourcePool:
    """Test pool identifiers"""

    def test_stock_pools(self):
        """Test the stock pool names"""
        assert ResourcePool.API_INSTANCES.value == "api_instances"
        assert ResourcePool.WORKER_PROCESSES.value == "worker_processes"
        assert ResourcePool.CACHE_NODES.value == "cache_nodes"
        assert ResourcePool.DATABASE_CONNECTIONS.value == "database_connections"

    def test_normalize_enum_and_string(self):
        """Test enum members and custom strings normalize to plain strings"""
        assert normalize_pool(ResourcePool.CACHE_NODES) == "cache_nodes"
        assert normalize_pool("gpu_workers") == "gpu_workers"
        assert normalize_pool("  gpu_workers ") == "gpu_workers"

    @pytest.mark.parametrize("bad", ["", "   ", None, 42])
    def test_normalize_rejects_invalid(self, bad):
        """Test empty or non-string pools are rejected"""
        with pytest.raises(ValueError):
            normalize_pool(bad)


class TestComparisonOperator:
    """Test threshold operators"""

    @pytest.mark.parametrize("operator,value,expected", [
        (ComparisonOperator.GT, 71, True),
        (ComparisonOperator.GT, 70, False),
        (ComparisonOperator.GTE, 70, True),
        (ComparisonOperator.LT, 69, True),
        (ComparisonOperator.LTE, 70, True),
        (ComparisonOperator.EQ, 70, True),
        (ComparisonOperator.NEQ, 70, False),
    ])
    def test_compare(self, operator, value, expected):
        """Test each operator against a threshold of 70"""
        assert operator.compare(value, 70) is expected


class TestMetricSample:
    """Test MetricSample dataclass"""

    def test_defaults(self):
        """Test unspecified metrics default to zero"""
        sample = MetricSample(timestamp=NOW, cpu=55.0)

        assert sample.cpu == 55.0
        assert sample.memory == 0.0
        assert sample.queue_length == 0.0

    def test_rejects_non_numeric(self):
        """Test values must be numbers"""
        with pytest.raises(TypeError):
            MetricSample(timestamp=NOW, cpu="high")
        with pytest.raises(TypeError):
            MetricSample(timestamp=NOW, cpu=True)
        with pytest.raises(TypeError):
            MetricSample(timestamp="2024-01-01", cpu=1.0)

    def test_out_of_range_values_are_accepted(self):
        """Test range problems are reported, not raised"""
        sample = MetricSample(timestamp=NOW, cpu=150.0)

        assert sample.is_well_formed is False
        assert MetricSample(timestamp=NOW, memory=-1.0).is_well_formed is False
        assert MetricSample(timestamp=NOW, cpu=math.nan).is_well_formed is False
        assert MetricSample(timestamp=NOW, cpu=50.0, response_time=25000).is_well_formed is True

    def test_value_aliases(self):
        """Test condition metric names resolve to sample fields"""
        sample = MetricSample(timestamp=NOW, request_rate=120.0, response_time=300.0)

        assert sample.value("requests") == 120.0
        assert sample.value("request_rate") == 120.0
        assert sample.value("response_time") == 300.0

    def test_value_unknown_metric(self):
        """Test unknown metric names raise KeyError"""
        with pytest.raises(KeyError):
            MetricSample(timestamp=NOW).value("disk")

    def test_snapshot(self):
        """Test the subset recorded on scaling events"""
        sample = MetricSample(timestamp=NOW, cpu=80, memory=60, request_rate=10, response_time=250)

        assert sample.snapshot() == {"cpu": 80, "memory": 60, "requests": 10, "response_time": 250}

    def test_to_dict(self):
        """Test serialization uses an ISO timestamp"""
        data = MetricSample(timestamp=NOW, cpu=1.0).to_dict()

        assert data["timestamp"] == NOW.isoformat()
        assert data["cpu"] == 1.0


class TestScalingActionConfig:
    """Test action bounds"""

    def test_clamp(self):
        """Test counts are kept within min and max"""
        action = ScalingActionConfig(ScalingAction.SCALE_UP, amount=1, min_instances=2, max_instances=5)

        assert action.clamp(0) == 2
        assert action.clamp(3) == 3
        assert action.clamp(9) == 5


class TestScalingRule:
    """Test ScalingRule defaults"""

    def test_defaults(self):
        """Test a minimal rule"""
        rule = ScalingRule(name="r", resource_pool="api_instances")

        assert rule.enabled is True
        assert rule.cooldown_seconds == 300.0
        assert rule.priority == 0
        assert rule.trigger == ScalingTrigger.CUSTOM
        assert rule.id is None

    def test_condition_defaults(self):
        """Test condition window and aggregation defaults"""
        condition = ScalingCondition("cpu", ComparisonOperator.GT, 70)

        assert condition.duration_seconds == 60.0
        assert condition.aggregation == Aggregation.AVG


class TestScalingEvent:
    """Test ScalingEvent dataclass"""

    def _event(self, rule_id="rule_abc"):
        return ScalingEvent(
            id="event_1", timestamp=NOW, resource_pool="api_instances",
            action=ScalingAction.SCALE_UP, reason="Rule: High CPU", rule_id=rule_id,
            before_instances=2, after_instances=3, metrics={"cpu": 80.0}, success=True,
        )

    def test_is_emergency(self):
        """Test emergency events are recognised by rule id"""
        assert self._event().is_emergency is False
        assert self._event("emergency").is_emergency is True

    def test_to_dict(self):
        """Test event serialization"""
        data = self._event().to_dict()

        assert data["action"] == "scale_up"
        assert data["before_instances"] == 2
        assert data["after_instances"] == 3
        assert data["timestamp"] == NOW.isoformat()
        assert data["error"] is None
