"""
Auto-scaling service: the public surface over the control loop.

Each instance owns its own rules, metrics, events and instance counts, so
several services (per test, per tenant) can coexist in one process.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from .conditions import ConditionEvaluator
from .config import AutoScalingConfig
from .emergency import EmergencyOverride
from .events import EventBus, EventCallback, ScalingEventLog
from .executor import ResourceScaler, ScalingExecutor
from .metrics_store import MetricsStore
from .models import (
    MetricSample, PoolId, ScalingEvent, ScalingPrediction, ScalingRule, normalize_pool, utc_now
)
from .prediction import LOW_CONFIDENCE, TrendPredictor
from .registry import RuleRegistry
from .scalers import SimulatedResourceScaler
from .scheduler import EvaluationScheduler, TickResult

logger = logging.getLogger(__name__)


class AutoScalingService:
    """
    Rule-driven auto-scaler for a set of resource pools.

    Metrics producers call record_metrics(); the scheduler evaluates rules on
    a fixed cadence and delegates actuation to the configured ResourceScaler.
    """

    def __init__(self, config: Optional[AutoScalingConfig] = None,
                 scaler: Optional[ResourceScaler] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config or AutoScalingConfig()
        self.scaler = scaler or SimulatedResourceScaler()
        self._clock = clock or utc_now

        self.store = MetricsStore(self.config.metrics_retention_seconds, clock=self._clock)
        self.event_log = ScalingEventLog(
            self.config.metrics_retention_seconds, self.config.max_events_retained, clock=self._clock
        )
        self.event_bus = EventBus()
        self.registry = RuleRegistry()
        self.evaluator = ConditionEvaluator(self.store, clock=self._clock)
        self.predictor = TrendPredictor(self.store, self.config.cost_per_instance_hour)
        self.executor = ScalingExecutor(
            self.store, self.evaluator, self.scaler, self.event_log,
            event_bus=self.event_bus,
            initial_instances=self.config.initial_instances,
            actuation_timeout_seconds=self.config.actuation_timeout_seconds,
            clock=self._clock,
        )
        self.emergency = EmergencyOverride(
            self.store, self.executor,
            thresholds=self.config.emergency.thresholds(),
            enabled=self.config.emergency.enabled,
        )
        self.scheduler = EvaluationScheduler(
            self.registry, self.store, self.executor, self.emergency, self.event_log,
            evaluation_interval_seconds=self.config.evaluation_interval_seconds,
            max_scaling_events_per_hour=self.config.max_scaling_events_per_hour,
            enabled=self.config.enabled,
            max_parallel_pools=self.config.max_parallel_pools,
            clock=self._clock,
        )

        if self.config.load_default_rules:
            self.registry.install_default_rules()
        for rule in self.config.build_rules():
            self.registry.add_rule(rule)

    # Ingest

    def record_metrics(self, pool: PoolId, sample: Optional[MetricSample] = None,
                       **values: float) -> MetricSample:
        """
        Record a sample for a pool.

        Either pass a MetricSample or the metric values as keyword arguments;
        keyword samples are stamped with the current time.
        """
        if sample is None:
            values.setdefault("timestamp", self._clock())
            sample = MetricSample(**values)
        elif values:
            raise ValueError("Pass either a sample or metric values, not both")

        self.store.record_metrics(pool, sample)
        return sample

    def get_current_metrics(self, pool: PoolId) -> Optional[MetricSample]:
        return self.store.current_metrics(pool)

    # Query surface

    def get_instances(self, pool: PoolId) -> int:
        return self.executor.get_instances(pool)

    def set_instances(self, pool: PoolId, count: int) -> None:
        """Seed a pool's instance count without actuating"""
        self.executor.set_instances(pool, count)

    def get_resource_status(self) -> Dict[str, Dict[str, Any]]:
        """Instance count and latest sample for every known pool"""
        pools = list(self.executor.instance_counts())
        pools.extend(p for p in self.store.pools() if p not in pools)

        return {
            pool: {
                "instances": self.executor.get_instances(pool),
                "metrics": self.store.current_metrics(pool),
            }
            for pool in pools
        }

    def get_scaling_events(self, limit: Optional[int] = None) -> List[ScalingEvent]:
        """Recorded events, newest first"""
        return self.event_log.recent(limit)

    def get_prediction(self, pool: PoolId, time_horizon_minutes: float = 60) -> ScalingPrediction:
        """Advisory forecast for a pool; never actuates"""
        if time_horizon_minutes <= 0:
            raise ValueError("time_horizon_minutes must be positive")

        pool_id = normalize_pool(pool)
        current = self.executor.get_instances(pool_id)

        if not self.config.enable_predictive_scaling:
            latest = self.store.current_metrics(pool_id)
            return ScalingPrediction(
                resource_pool=pool_id,
                time_horizon_minutes=time_horizon_minutes,
                predicted_load=max(latest.cpu, latest.memory) if latest else 0.0,
                recommended_instances=current,
                confidence=LOW_CONFIDENCE,
                factors=["predictive_scaling_disabled"],
                estimated_cost=current * self.config.cost_per_instance_hour * time_horizon_minutes / 60,
            )

        return self.predictor.predict(pool_id, current, time_horizon_minutes)

    # Rule management

    def add_rule(self, rule: ScalingRule) -> str:
        return self.registry.add_rule(rule)

    def update_rule(self, rule_id: str, **changes: Any) -> bool:
        return self.registry.update_rule(rule_id, **changes)

    def remove_rule(self, rule_id: str) -> bool:
        removed = self.registry.remove_rule(rule_id)
        if removed:
            self.executor.forget_rule(rule_id)
        return removed

    def get_rule(self, rule_id: str) -> Optional[ScalingRule]:
        return self.registry.get_rule(rule_id)

    def list_rules(self) -> List[ScalingRule]:
        return self.registry.list_rules()

    # Eventing

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Receive every scaling event; returns an unsubscribe function"""
        return self.event_bus.subscribe(callback)

    # Lifecycle

    def evaluate_now(self) -> TickResult:
        """Run one evaluation tick synchronously"""
        return self.scheduler.tick()

    def start(self) -> None:
        self.scheduler.start()

    def stop(self, wait: bool = True) -> None:
        self.scheduler.stop(wait=wait)

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    def shutdown(self) -> None:
        """Stop evaluating, let in-flight actuations finish, and clear state"""
        self.scheduler.shutdown()
        self.executor.shutdown(wait=True)
        self.registry.clear()
        self.store.clear()
        self.event_log.clear()
        logger.info("Auto-scaling service shut down")

    def __enter__(self) -> "AutoScalingService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
