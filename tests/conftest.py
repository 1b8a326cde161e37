"""
Pytest configuration and fixtures for auto-scaler tests
"""
import threading
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from autoscaling.config import AutoScalingConfig
from autoscaling.executor import ResourceScaler
from autoscaling.models import (
    Aggregation, ComparisonOperator, ScalingAction, ScalingActionConfig,
    ScalingCondition, ScalingRule
)
from autoscaling.service import AutoScalingService
from autoscaling.simulation import ManualClock


START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class RecordingScaler(ResourceScaler):
    """Scaler double that records calls and can be told to fail"""

    def __init__(self, result=True, error=None, delay_event=None):
        self.result = result
        self.error = error
        self.delay_event = delay_event
        self.calls = []
        self._lock = threading.Lock()

    def scale_resource(self, pool, target_instances):
        with self._lock:
            self.calls.append((pool, target_instances))
        if self.delay_event is not None:
            self.delay_event.wait(5)
        if self.error is not None:
            raise self.error
        return self.result


def make_rule(name="High CPU", pool="api_instances", metric="cpu", operator=ComparisonOperator.GT,
              threshold=70.0, duration=120.0, action=ScalingAction.SCALE_UP, amount=1,
              min_instances=1, max_instances=10, cooldown=300.0, priority=0, **kwargs):
    """Single-condition, single-action rule"""
    return ScalingRule(
        name=name,
        resource_pool=pool,
        conditions=[ScalingCondition(metric, operator, threshold, duration, Aggregation.AVG)],
        actions=[ScalingActionConfig(action, amount=amount, min_instances=min_instances,
                                     max_instances=max_instances)],
        cooldown_seconds=cooldown,
        priority=priority,
        **kwargs
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    """Manual clock starting at a fixed instant"""
    return ManualClock(START)


@pytest.fixture
def scaler():
    return RecordingScaler()


@pytest.fixture
def make_service(clock, scaler):
    """Factory for services sharing the test clock; all are shut down afterwards"""
    services = []

    def factory(config=None, scaler_override=None, **config_kwargs):
        if config is None:
            config = AutoScalingConfig(**config_kwargs)
        service = AutoScalingService(config, scaler=scaler_override or scaler, clock=clock)
        services.append(service)
        return service

    yield factory

    for service in services:
        service.shutdown()


@pytest.fixture
def service(make_service):
    """Service with stock instance counts and no rules"""
    return make_service()
