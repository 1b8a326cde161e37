"""
Emergency override: doubles a pool's capacity when hard safety thresholds are
breached, bypassing rule cooldowns and the hourly action cap.
"""

from dataclasses import dataclass
from typing import List, Optional
import logging

from .executor import ScalingExecutor
from .metrics_store import MetricsStore
from .models import (
    EMERGENCY_RULE_ID, MetricSample, PoolId, ScalingAction, ScalingEvent, normalize_pool
)

logger = logging.getLogger(__name__)


@dataclass
class EmergencyThresholds:
    """Hard limits that trigger the override when exceeded"""
    cpu: float = 90.0
    memory: float = 85.0
    response_time: float = 10000.0  # milliseconds
    max_instances: int = 20

    def __post_init__(self):
        if self.max_instances < 1:
            raise ValueError("max_instances must be at least 1")


def breached_thresholds(sample: MetricSample, thresholds: EmergencyThresholds) -> List[str]:
    """Names of the thresholds the sample exceeds"""
    breached = []
    if sample.cpu > thresholds.cpu:
        breached.append("cpu")
    if sample.memory > thresholds.memory:
        breached.append("memory")
    if sample.response_time > thresholds.response_time:
        breached.append("response_time")
    return breached


def emergency_target(current_instances: int, ceiling: int = 20) -> int:
    """Double the current count (an empty pool counts as one), capped at the ceiling"""
    return min(ceiling, max(current_instances, 1) * 2)


class EmergencyOverride:
    """
    Checks the latest sample of a pool against the emergency thresholds.

    Never consults or sets rule cooldowns, so a persisting emergency acts on
    consecutive ticks. A pool already at the ceiling is left alone.
    """

    def __init__(self, store: MetricsStore, executor: ScalingExecutor,
                 thresholds: Optional[EmergencyThresholds] = None, enabled: bool = True):
        self.store = store
        self.executor = executor
        self.thresholds = thresholds or EmergencyThresholds()
        self.enabled = enabled

    def check(self, pool: PoolId) -> Optional[ScalingEvent]:
        """Actuate an emergency scale-up for the pool if needed"""
        if not self.enabled:
            return None

        pool_id = normalize_pool(pool)
        sample = self.store.current_metrics(pool_id)
        if sample is None:
            return None

        breached = breached_thresholds(sample, self.thresholds)
        if not breached:
            return None

        with self.executor.pool_lock(pool_id):
            current = self.executor.get_instances(pool_id)
            target = emergency_target(current, self.thresholds.max_instances)

            if target <= current:
                logger.warning(f"Emergency on {pool_id} ({', '.join(breached)}) but already "
                               f"at the ceiling of {self.thresholds.max_instances} instances")
                return None

            logger.warning(f"Emergency scaling triggered for {pool_id}: {', '.join(breached)}")
            return self.executor.actuate(
                pool_id, ScalingAction.SCALE_UP, current, target,
                reason=f"Emergency scaling - critical {', '.join(breached)}",
                rule_id=EMERGENCY_RULE_ID,
                metrics=sample.snapshot(),
            )
