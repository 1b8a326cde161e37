"""
Trend-based load prediction.

Fits an index-based linear trend to the most recent samples of a pool and
projects it forward to recommend an instance count. Purely advisory: nothing
here actuates or mutates state.
"""

import math
import statistics
from typing import List, Optional, Sequence

from .metrics_store import MetricsStore
from .models import PoolId, ScalingPrediction, normalize_pool

MIN_SAMPLES = 10
LOW_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.9
MIN_RECOMMENDED = 1
MAX_RECOMMENDED = 20
DEFAULT_LOAD = 50.0

SCALE_UP_LOAD = 80.0
SCALE_UP_TARGET = 70.0
SCALE_DOWN_LOAD = 30.0
SCALE_DOWN_TARGET = 50.0


def calculate_trend(values: Sequence[float]) -> float:
    """Calculate trend slope per sample using ordinary least squares"""
    if len(values) < 2:
        return 0.0

    n = len(values)
    x_vals = list(range(n))

    x_mean = statistics.mean(x_vals)
    y_mean = statistics.mean(values)

    numerator = sum((x - x_mean) * (y - y_mean) for x, y in zip(x_vals, values))
    denominator = sum((x - x_mean) ** 2 for x in x_vals)

    return numerator / denominator if denominator != 0 else 0.0


def project(values: Sequence[float], time_horizon_minutes: float,
            lower: Optional[float] = 0.0, upper: Optional[float] = None) -> float:
    """Window average moved forward by trend * horizon/60, optionally clamped"""
    if not values:
        return 0.0
    projected = statistics.mean(values) + calculate_trend(values) * time_horizon_minutes / 60
    if lower is not None:
        projected = max(lower, projected)
    if upper is not None:
        projected = min(upper, projected)
    return projected


def recommend_instances(current_instances: int, predicted_load: float) -> int:
    """
    Instance count for a predicted load percentage.

    Above 80% scale proportionally up (ceil), below 30% proportionally down
    (floor, at least one), otherwise keep the current count. Always within
    [1, 20].
    """
    recommended = current_instances
    if predicted_load > SCALE_UP_LOAD:
        recommended = math.ceil(current_instances * predicted_load / SCALE_UP_TARGET)
    elif predicted_load < SCALE_DOWN_LOAD:
        recommended = max(1, math.floor(current_instances * predicted_load / SCALE_DOWN_TARGET))

    return max(MIN_RECOMMENDED, min(MAX_RECOMMENDED, recommended))


def prediction_confidence(sample_count: int) -> float:
    """Confidence grows with history and is capped"""
    if sample_count < MIN_SAMPLES:
        return LOW_CONFIDENCE
    return min(MAX_CONFIDENCE, sample_count / 100)


class TrendPredictor:
    """Produces ScalingPrediction objects from a MetricsStore"""

    def __init__(self, store: MetricsStore, cost_per_instance_hour: float = 10.0,
                 window: int = MIN_SAMPLES):
        self.store = store
        self.cost_per_instance_hour = cost_per_instance_hour
        self.window = window

    def _estimated_cost(self, instances: int, time_horizon_minutes: float) -> float:
        return instances * self.cost_per_instance_hour * (time_horizon_minutes / 60)

    def predict(self, pool: PoolId, current_instances: int,
                time_horizon_minutes: float = 60) -> ScalingPrediction:
        """Forecast load over the horizon and recommend an instance count"""
        pool_id = normalize_pool(pool)
        samples = self.store.series(pool_id)

        if len(samples) < self.window:
            latest = samples[-1] if samples else None
            current_load = max(latest.cpu, latest.memory) if latest else DEFAULT_LOAD
            return ScalingPrediction(
                resource_pool=pool_id,
                time_horizon_minutes=time_horizon_minutes,
                predicted_load=current_load,
                recommended_instances=current_instances,
                confidence=LOW_CONFIDENCE,
                factors=["insufficient_data"],
                estimated_cost=self._estimated_cost(current_instances, time_horizon_minutes),
            )

        recent = samples[-self.window:]
        cpu_values = [s.cpu for s in recent]
        memory_values = [s.memory for s in recent]
        request_values = [s.request_rate for s in recent]

        predicted_cpu = project(cpu_values, time_horizon_minutes, 0.0, 100.0)
        predicted_memory = project(memory_values, time_horizon_minutes, 0.0, 100.0)
        predicted_load = max(predicted_cpu, predicted_memory)

        recommended = recommend_instances(current_instances, predicted_load)

        return ScalingPrediction(
            resource_pool=pool_id,
            time_horizon_minutes=time_horizon_minutes,
            predicted_load=predicted_load,
            recommended_instances=recommended,
            confidence=prediction_confidence(len(samples)),
            factors=self._trend_factors(cpu_values, memory_values, request_values),
            estimated_cost=self._estimated_cost(recommended, time_horizon_minutes),
        )

    def _trend_factors(self, cpu_values: List[float], memory_values: List[float],
                       request_values: List[float]) -> List[str]:
        factors = []
        if abs(calculate_trend(cpu_values)) > 5:
            factors.append("cpu_trend")
        if abs(calculate_trend(memory_values)) > 5:
            factors.append("memory_trend")
        if abs(calculate_trend(request_values)) > 10:
            factors.append("requests_trend")
        return factors or ["stable_load"]
