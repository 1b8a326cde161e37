"""
Auto-scaling control loop

Rule-driven scaling of resource pools from recorded metrics, with an
emergency override, an hourly action cap and advisory trend prediction.
"""

from .models import (
    ResourcePool, ScalingAction, ScalingTrigger, ComparisonOperator, Aggregation,
    MetricSample, ScalingCondition, ScalingActionConfig, ScalingRule, ScalingEvent,
    ScalingPrediction, ScalingError, EMERGENCY_RULE_ID
)
from .metrics_store import MetricsStore, InsufficientDataError
from .conditions import ConditionEvaluator
from .registry import RuleRegistry, InvalidRuleConfigurationError, default_rules, rule_from_dict
from .events import ScalingEventLog, EventBus
from .rate_limit import ActionBudget, RateLimitExceeded
from .executor import ResourceScaler, ScalingExecutor, RuleState, ActuationFailure
from .emergency import EmergencyOverride, EmergencyThresholds
from .prediction import TrendPredictor
from .scheduler import EvaluationScheduler, TickResult
from .config import (
    AutoScalingConfig, EmergencyConfig, LoggingConfig, ConfigManager, ConfigError,
    load_config_from_file, load_config_with_env_override, create_default_config_file
)
from .scalers import SimulatedResourceScaler
from .service import AutoScalingService
from .logger import configure_logging, ScalingLogger

# The command-line interface lives in autoscaling.cli (requires typer)

__version__ = "0.1.0"

__all__ = [
    "ResourcePool",
    "ScalingAction",
    "ScalingTrigger",
    "ComparisonOperator",
    "Aggregation",
    "MetricSample",
    "ScalingCondition",
    "ScalingActionConfig",
    "ScalingRule",
    "ScalingEvent",
    "ScalingPrediction",
    "ScalingError",
    "EMERGENCY_RULE_ID",
    "MetricsStore",
    "InsufficientDataError",
    "ConditionEvaluator",
    "RuleRegistry",
    "InvalidRuleConfigurationError",
    "default_rules",
    "rule_from_dict",
    "ScalingEventLog",
    "EventBus",
    "ActionBudget",
    "RateLimitExceeded",
    "ResourceScaler",
    "ScalingExecutor",
    "RuleState",
    "ActuationFailure",
    "EmergencyOverride",
    "EmergencyThresholds",
    "TrendPredictor",
    "EvaluationScheduler",
    "TickResult",
    "AutoScalingConfig",
    "EmergencyConfig",
    "LoggingConfig",
    "ConfigManager",
    "ConfigError",
    "load_config_from_file",
    "load_config_with_env_override",
    "create_default_config_file",
    "SimulatedResourceScaler",
    "AutoScalingService",
    "configure_logging",
    "ScalingLogger",
]
