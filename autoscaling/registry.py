"""
Scaling rule registry.

Rules are plain data: a pool, AND-ed conditions, ordered actions, a cooldown
and a priority. The registry validates every rule on the way in so an invalid
configuration can never reach evaluation.
"""

import copy
import threading
import uuid
from dataclasses import fields, replace
from typing import Any, Dict, List, Optional
import logging

from .models import (
    Aggregation, ComparisonOperator, ResourcePool, ScalingAction, ScalingActionConfig,
    ScalingCondition, ScalingError, ScalingRule, ScalingTrigger, METRIC_ALIASES,
    normalize_pool
)

logger = logging.getLogger(__name__)


class InvalidRuleConfigurationError(ScalingError):
    """Raised when a rule is rejected at add/update time"""
    pass


def _coerce_enum(enum_cls, value, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = [member.value for member in enum_cls]
        raise InvalidRuleConfigurationError(f"Unknown {what} '{value}'. Valid values: {valid}")


def validate_rule(rule: ScalingRule) -> List[str]:
    """
    Validate a rule and return a list of error messages (empty if valid).

    Args:
        rule: Rule to validate

    Returns:
        List of validation error messages
    """
    errors = []

    if not rule.name or not str(rule.name).strip():
        errors.append("Rule name cannot be empty")

    try:
        normalize_pool(rule.resource_pool)
    except ValueError as e:
        errors.append(str(e))

    if not isinstance(rule.trigger, ScalingTrigger):
        errors.append(f"Unknown trigger '{rule.trigger}'")

    if rule.cooldown_seconds < 0:
        errors.append("cooldown_seconds must be non-negative")

    if not rule.actions:
        errors.append("Rule must define at least one action")

    for i, condition in enumerate(rule.conditions):
        prefix = f"Condition {i}"
        if condition.metric not in METRIC_ALIASES:
            errors.append(f"{prefix}: unknown metric '{condition.metric}'")
        if not isinstance(condition.operator, ComparisonOperator):
            errors.append(f"{prefix}: unknown operator '{condition.operator}'")
        if not isinstance(condition.aggregation, Aggregation):
            errors.append(f"{prefix}: unknown aggregation '{condition.aggregation}'")
        if condition.duration_seconds < 0:
            errors.append(f"{prefix}: duration_seconds must be non-negative")

    for i, action in enumerate(rule.actions):
        prefix = f"Action {i}"
        if not isinstance(action.action, ScalingAction):
            errors.append(f"{prefix}: unknown action kind '{action.action}'")
        if action.amount < 0:
            errors.append(f"{prefix}: amount must be non-negative")
        if action.min_instances < 0:
            errors.append(f"{prefix}: min_instances must be non-negative")
        if action.min_instances > action.max_instances:
            errors.append(f"{prefix}: min_instances ({action.min_instances}) must be "
                          f"<= max_instances ({action.max_instances})")
        if action.step_size < 1:
            errors.append(f"{prefix}: step_size must be at least 1")
        if action.target_utilization is not None and not 0 < action.target_utilization <= 100:
            errors.append(f"{prefix}: target_utilization must be between 0 and 100")

    return errors


def condition_from_dict(data: Dict[str, Any]) -> ScalingCondition:
    """Build a condition from plain data"""
    try:
        return ScalingCondition(
            metric=data["metric"],
            operator=_coerce_enum(ComparisonOperator, data["operator"], "operator"),
            threshold=float(data["threshold"]),
            duration_seconds=float(data.get("duration_seconds", 60.0)),
            aggregation=_coerce_enum(Aggregation, data.get("aggregation", "avg"), "aggregation"),
        )
    except KeyError as e:
        raise InvalidRuleConfigurationError(f"Condition is missing field {e}")


def action_from_dict(data: Dict[str, Any]) -> ScalingActionConfig:
    """Build an action config from plain data"""
    try:
        return ScalingActionConfig(
            action=_coerce_enum(ScalingAction, data["action"], "action kind"),
            amount=int(data.get("amount", 1)),
            min_instances=int(data.get("min_instances", 1)),
            max_instances=int(data.get("max_instances", 10)),
            step_size=int(data.get("step_size", 1)),
            target_utilization=data.get("target_utilization"),
        )
    except KeyError as e:
        raise InvalidRuleConfigurationError(f"Action is missing field {e}")


def rule_from_dict(data: Dict[str, Any], default_cooldown_seconds: float = 300.0) -> ScalingRule:
    """
    Build a rule from plain data, e.g. a YAML config entry.

    Raises:
        InvalidRuleConfigurationError: If required fields are missing or enums are unknown
    """
    try:
        name = data["name"]
        pool = data["resource_pool"]
    except KeyError as e:
        raise InvalidRuleConfigurationError(f"Rule is missing field {e}")

    return ScalingRule(
        name=name,
        resource_pool=pool,
        conditions=[condition_from_dict(c) for c in data.get("conditions", [])],
        actions=[action_from_dict(a) for a in data.get("actions", [])],
        trigger=_coerce_enum(ScalingTrigger, data.get("trigger", "custom"), "trigger"),
        enabled=bool(data.get("enabled", True)),
        cooldown_seconds=float(data.get("cooldown_seconds", default_cooldown_seconds)),
        priority=int(data.get("priority", 0)),
        tags=list(data.get("tags", [])),
        description=data.get("description", ""),
    )


def default_rules() -> List[ScalingRule]:
    """Stock rules covering API CPU, worker memory and API response time"""
    return [
        ScalingRule(
            name="API CPU Scaling",
            description="Scale API instances based on CPU utilization",
            resource_pool=ResourcePool.API_INSTANCES.value,
            trigger=ScalingTrigger.CPU,
            conditions=[ScalingCondition("cpu", ComparisonOperator.GT, 70, 120, Aggregation.AVG)],
            actions=[ScalingActionConfig(ScalingAction.SCALE_UP, amount=1,
                                         min_instances=1, max_instances=10, step_size=1)],
            cooldown_seconds=5 * 60,
            priority=1,
            tags=["cpu", "api"],
        ),
        ScalingRule(
            name="Worker Memory Scaling",
            description="Scale worker processes based on memory usage",
            resource_pool=ResourcePool.WORKER_PROCESSES.value,
            trigger=ScalingTrigger.MEMORY,
            conditions=[ScalingCondition("memory", ComparisonOperator.GT, 80, 180, Aggregation.AVG)],
            actions=[ScalingActionConfig(ScalingAction.SCALE_UP, amount=1,
                                         min_instances=1, max_instances=5, step_size=1)],
            cooldown_seconds=10 * 60,
            priority=2,
            tags=["memory", "worker"],
        ),
        ScalingRule(
            name="Response Time Scaling",
            description="Scale based on response time degradation",
            resource_pool=ResourcePool.API_INSTANCES.value,
            trigger=ScalingTrigger.RESPONSE_TIME,
            conditions=[ScalingCondition("response_time", ComparisonOperator.GT, 2000, 60,
                                         Aggregation.AVG)],
            actions=[ScalingActionConfig(ScalingAction.SCALE_UP, amount=2,
                                         min_instances=1, max_instances=15, step_size=2)],
            cooldown_seconds=3 * 60,
            priority=3,
            tags=["response_time", "performance"],
        ),
    ]


class RuleRegistry:
    """
    Thread-safe CRUD over scaling rules.

    Enabled rules are listed by descending priority so that, under the hourly
    action cap, the most important rules claim the remaining budget first.
    """

    _UPDATABLE = {f.name for f in fields(ScalingRule)} - {"id"}

    def __init__(self):
        self._rules: Dict[str, ScalingRule] = {}
        self._order: Dict[str, int] = {}
        self._sequence = 0
        self._lock = threading.RLock()

    def _normalize(self, rule: ScalingRule) -> ScalingRule:
        errors = validate_rule(rule)
        if errors:
            raise InvalidRuleConfigurationError(
                f"Invalid rule '{rule.name}': {'; '.join(errors)}")
        return replace(rule, resource_pool=normalize_pool(rule.resource_pool),
                       conditions=list(rule.conditions),
                       actions=[copy.copy(a) for a in rule.actions],
                       tags=list(rule.tags))

    def add_rule(self, rule: ScalingRule) -> str:
        """
        Register a rule and return its generated id.

        Raises:
            InvalidRuleConfigurationError: If the rule fails validation
        """
        normalized = self._normalize(rule)

        with self._lock:
            rule_id = f"rule_{uuid.uuid4().hex[:12]}"
            while rule_id in self._rules:
                rule_id = f"rule_{uuid.uuid4().hex[:12]}"

            self._rules[rule_id] = replace(normalized, id=rule_id)
            self._order[rule_id] = self._sequence
            self._sequence += 1

        logger.info(f"Auto-scaling rule added: {normalized.name} ({rule_id})")
        return rule_id

    def update_rule(self, rule_id: str, **changes: Any) -> bool:
        """
        Apply a partial update to a rule.

        Returns:
            True if the rule exists and was updated, False if it was not found

        Raises:
            InvalidRuleConfigurationError: If the change is unknown or the result is invalid
        """
        unknown = set(changes) - self._UPDATABLE
        if unknown:
            raise InvalidRuleConfigurationError(f"Cannot update fields: {sorted(unknown)}")

        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                return False

            updated = self._normalize(replace(current, **changes))
            self._rules[rule_id] = replace(updated, id=rule_id)

        logger.info(f"Auto-scaling rule updated: {updated.name} ({rule_id})")
        return True

    def remove_rule(self, rule_id: str) -> bool:
        """Remove a rule; False if it was not registered"""
        with self._lock:
            removed = self._rules.pop(rule_id, None)
            self._order.pop(rule_id, None)

        if removed is not None:
            logger.info(f"Auto-scaling rule removed: {rule_id}")
            return True
        return False

    def get_rule(self, rule_id: str) -> Optional[ScalingRule]:
        """Copy of a rule, or None"""
        with self._lock:
            rule = self._rules.get(rule_id)
            return copy.deepcopy(rule) if rule is not None else None

    def _sorted(self, rules: List[ScalingRule]) -> List[ScalingRule]:
        return sorted(rules, key=lambda r: (-r.priority, self._order[r.id]))

    def list_rules(self) -> List[ScalingRule]:
        """Copies of every rule, highest priority first"""
        with self._lock:
            return copy.deepcopy(self._sorted(list(self._rules.values())))

    def list_enabled_rules(self) -> List[ScalingRule]:
        """Copies of enabled rules, highest priority first"""
        with self._lock:
            enabled = [r for r in self._rules.values() if r.enabled]
            return copy.deepcopy(self._sorted(enabled))

    def install_default_rules(self) -> List[str]:
        """Register the stock rules and return their ids"""
        return [self.add_rule(rule) for rule in default_rules()]

    def clear(self) -> None:
        """Remove every rule"""
        with self._lock:
            self._rules.clear()
            self._order.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __contains__(self, rule_id: str) -> bool:
        with self._lock:
            return rule_id in self._rules
