"""
Threshold condition evaluation over trailing metric windows.
"""

import statistics
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence
import logging

from .metrics_store import MetricsStore
from .models import Aggregation, PoolId, ScalingCondition, normalize_pool, utc_now

logger = logging.getLogger(__name__)


AGGREGATORS: Dict[Aggregation, Callable[[Sequence[float]], float]] = {
    Aggregation.AVG: statistics.mean,
    Aggregation.MAX: max,
    Aggregation.MIN: min,
    Aggregation.SUM: sum,
    Aggregation.COUNT: len,
}


def aggregate(values: Sequence[float], aggregation: Aggregation) -> Optional[float]:
    """Reduce window values; None when the window is empty"""
    if not values:
        return None
    return float(AGGREGATORS[aggregation](values))


class ConditionEvaluator:
    """
    Evaluates scaling conditions against a MetricsStore.

    Fails closed: an empty window or an unknown metric makes the condition
    false. A list of conditions holds only when every one of them holds.
    """

    def __init__(self, store: MetricsStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or utc_now

    def window_values(self, condition: ScalingCondition, pool: PoolId) -> List[float]:
        """Values of the condition's metric inside its trailing window"""
        if condition.duration_seconds <= 0:
            latest = self.store.current_metrics(pool)
            samples = [latest] if latest is not None else []
        else:
            since = self._clock() - timedelta(seconds=condition.duration_seconds)
            samples = self.store.series_since(pool, since)

        return [sample.value(condition.metric) for sample in samples]

    def evaluate(self, condition: ScalingCondition, pool: PoolId) -> bool:
        """Check a single condition against the pool's recent metrics"""
        pool_id = normalize_pool(pool)
        try:
            values = self.window_values(condition, pool_id)
        except KeyError as e:
            logger.warning(f"Condition on {pool_id} references unknown metric: {e}")
            return False

        value = aggregate(values, condition.aggregation)
        if value is None:
            logger.debug(f"No samples for {pool_id}.{condition.metric} in the last "
                         f"{condition.duration_seconds:.0f}s; condition is false")
            return False

        result = condition.operator.compare(value, condition.threshold)
        logger.debug(f"{pool_id}: {condition.aggregation.value}({condition.metric})={value:.2f} "
                     f"{condition.operator.value} {condition.threshold} -> {result}")
        return result

    def evaluate_all(self, conditions: Sequence[ScalingCondition], pool: PoolId) -> bool:
        """All conditions must hold; an empty list never holds"""
        if not conditions:
            return False
        return all(self.evaluate(condition, pool) for condition in conditions)
