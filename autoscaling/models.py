"""
Core data model for the auto-scaling control loop.

Metric samples, scaling rules and their conditions/actions, the audit record
of each actuation attempt, and the advisory prediction returned by the trend
predictor.
"""

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Union


EMERGENCY_RULE_ID = "emergency"


class ScalingError(Exception):
    """Base class for auto-scaling errors"""
    pass


def utc_now() -> datetime:
    """Default clock used across the package"""
    return datetime.now(timezone.utc)


class ResourcePool(str, Enum):
    """Stock resource pools. Custom pools are plain strings."""
    API_INSTANCES = "api_instances"
    WORKER_PROCESSES = "worker_processes"
    CACHE_NODES = "cache_nodes"
    DATABASE_CONNECTIONS = "database_connections"


PoolId = Union[ResourcePool, str]


def normalize_pool(pool: PoolId) -> str:
    """Return the canonical string identifier for a pool"""
    if isinstance(pool, ResourcePool):
        return pool.value
    if not isinstance(pool, str) or not pool.strip():
        raise ValueError(f"Invalid resource pool: {pool!r}")
    return pool.strip()


class ScalingAction(str, Enum):
    """Action a rule can take once its conditions hold"""
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"
    MAINTAIN = "maintain"


class ScalingTrigger(str, Enum):
    """Category of signal a rule reacts to"""
    CPU = "cpu"
    MEMORY = "memory"
    REQUESTS = "requests"
    RESPONSE_TIME = "response_time"
    QUEUE_LENGTH = "queue_length"
    CUSTOM = "custom"


class ComparisonOperator(str, Enum):
    """Threshold comparison operators"""
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"

    def compare(self, value: float, threshold: float) -> bool:
        """Apply the operator to value and threshold"""
        operators = {
            ComparisonOperator.GT: lambda x, y: x > y,
            ComparisonOperator.GTE: lambda x, y: x >= y,
            ComparisonOperator.LT: lambda x, y: x < y,
            ComparisonOperator.LTE: lambda x, y: x <= y,
            ComparisonOperator.EQ: lambda x, y: x == y,
            ComparisonOperator.NEQ: lambda x, y: x != y,
        }
        return operators[self](value, threshold)


class Aggregation(str, Enum):
    """Reduction applied to the values in a condition window"""
    AVG = "avg"
    MAX = "max"
    MIN = "min"
    SUM = "sum"
    COUNT = "count"


UTILIZATION_FIELDS = ("cpu", "memory", "network", "request_rate")
PERFORMANCE_FIELDS = ("response_time", "throughput", "error_rate", "queue_length")

# Metric names accepted in conditions -> MetricSample attribute
METRIC_ALIASES: Dict[str, str] = {
    "cpu": "cpu",
    "memory": "memory",
    "network": "network",
    "requests": "request_rate",
    "request_rate": "request_rate",
    "response_time": "response_time",
    "throughput": "throughput",
    "error_rate": "error_rate",
    "queue_length": "queue_length",
}

# Percentages are bounded; the rest only need to be non-negative
_PERCENT_FIELDS = ("cpu", "memory", "network")


@dataclass(frozen=True)
class MetricSample:
    """A single time-stamped observation for one resource pool"""
    timestamp: datetime
    cpu: float = 0.0
    memory: float = 0.0
    network: float = 0.0
    request_rate: float = 0.0
    response_time: float = 0.0
    throughput: float = 0.0
    error_rate: float = 0.0
    queue_length: float = 0.0

    def __post_init__(self):
        if not isinstance(self.timestamp, datetime):
            raise TypeError("timestamp must be a datetime")

        # Only types are enforced here; producers own finiteness and ranges
        for name in UTILIZATION_FIELDS + PERFORMANCE_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"{name} must be a number, got {type(value).__name__}")

    @property
    def is_well_formed(self) -> bool:
        """True when every value is finite, non-negative and percentages are <= 100"""
        for name in UTILIZATION_FIELDS + PERFORMANCE_FIELDS:
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                return False
            if name in _PERCENT_FIELDS and value > 100:
                return False
        return True

    def value(self, metric: str) -> float:
        """
        Resolve a condition metric name to this sample's value.

        Raises:
            KeyError: If the metric name is unknown
        """
        attribute = METRIC_ALIASES.get(metric)
        if attribute is None:
            raise KeyError(f"Unknown metric '{metric}'")
        return float(getattr(self, attribute))

    def snapshot(self) -> Dict[str, float]:
        """Metric values recorded on a scaling event"""
        return {
            "cpu": self.cpu,
            "memory": self.memory,
            "requests": self.request_rate,
            "response_time": self.response_time,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class ScalingCondition:
    """Threshold test against an aggregated metric over a trailing window"""
    metric: str
    operator: ComparisonOperator
    threshold: float
    duration_seconds: float = 60.0
    aggregation: Aggregation = Aggregation.AVG


@dataclass
class ScalingActionConfig:
    """What to do when a rule fires, and the bounds the result must respect"""
    action: ScalingAction
    amount: int = 1
    min_instances: int = 1
    max_instances: int = 10
    step_size: int = 1
    target_utilization: Optional[float] = None

    def clamp(self, instances: int) -> int:
        """Keep an instance count inside [min_instances, max_instances]"""
        return max(self.min_instances, min(self.max_instances, instances))


@dataclass
class ScalingRule:
    """A resource pool bound to conditions, actions, a cooldown and a priority"""
    name: str
    resource_pool: str
    conditions: List[ScalingCondition] = field(default_factory=list)
    actions: List[ScalingActionConfig] = field(default_factory=list)
    trigger: ScalingTrigger = ScalingTrigger.CUSTOM
    enabled: bool = True
    cooldown_seconds: float = 300.0
    priority: int = 0
    tags: List[str] = field(default_factory=list)
    description: str = ""
    id: Optional[str] = None


@dataclass(frozen=True)
class ScalingEvent:
    """Audit record of one actuation attempt"""
    id: str
    timestamp: datetime
    resource_pool: str
    action: ScalingAction
    reason: str
    rule_id: str
    before_instances: int
    after_instances: int
    metrics: Dict[str, float]
    success: bool
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def is_emergency(self) -> bool:
        """True for events raised by the emergency override"""
        return self.rule_id == EMERGENCY_RULE_ID

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "resource_pool": self.resource_pool,
            "action": self.action.value,
            "reason": self.reason,
            "rule_id": self.rule_id,
            "before_instances": self.before_instances,
            "after_instances": self.after_instances,
            "metrics": dict(self.metrics),
            "success": self.success,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class ScalingPrediction:
    """Advisory forward-looking recommendation; never stored"""
    resource_pool: str
    time_horizon_minutes: float
    predicted_load: float
    recommended_instances: int
    confidence: float
    factors: List[str]
    estimated_cost: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return asdict(self)
