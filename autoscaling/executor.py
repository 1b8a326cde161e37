"""
Scaling executor: per-rule state machine, target computation and actuation.

Each rule moves Idle -> Evaluating -> Actuating -> Cooling-down. Actuation is
delegated to an external ResourceScaler with a bounded timeout; every
attempt, successful or not, yields exactly one ScalingEvent and starts the
rule's cooldown from the moment the attempt completed.
"""

import concurrent.futures
import math
import threading
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Set
import logging

from .conditions import ConditionEvaluator
from .events import EventBus, ScalingEventLog
from .metrics_store import MetricsStore
from .models import (
    EMERGENCY_RULE_ID, MetricSample, PoolId, ScalingAction, ScalingActionConfig,
    ScalingError, ScalingEvent, ScalingRule, normalize_pool, utc_now
)
from .rate_limit import ActionBudget, RateLimitExceeded

logger = logging.getLogger(__name__)


class ActuationFailure(ScalingError):
    """The external scaler failed, refused, or timed out"""
    pass


class StateTransitionError(ScalingError):
    """Raised when an invalid rule state transition is attempted"""
    pass


class ResourceScaler(ABC):
    """External provisioning collaborator (cloud API, process manager, ...)"""

    @abstractmethod
    def scale_resource(self, pool: str, target_instances: int) -> bool:
        """
        Bring a pool to the target instance count.

        Returns:
            True on success. False or an exception means the attempt failed.
        """
        pass


class RuleState(Enum):
    """Evaluation state of a single rule"""
    IDLE = "idle"
    EVALUATING = "evaluating"
    ACTUATING = "actuating"
    COOLING_DOWN = "cooling_down"


VALID_TRANSITIONS: Dict[RuleState, Set[RuleState]] = {
    RuleState.IDLE: {RuleState.EVALUATING},
    RuleState.EVALUATING: {RuleState.IDLE, RuleState.ACTUATING},
    RuleState.ACTUATING: {RuleState.COOLING_DOWN},
    RuleState.COOLING_DOWN: {RuleState.IDLE},
}


def round_up_instances(value: float) -> int:
    """Scale-up sizing errs toward enough capacity"""
    return int(math.ceil(value))


def round_down_instances(value: float) -> int:
    """Scale-down sizing never removes more than computed"""
    return int(math.floor(value))


def compute_target(current: int, action: ScalingActionConfig,
                   observed_utilization: Optional[float] = None) -> int:
    """
    Target instance count for an action, clamped to its bounds.

    With a target_utilization and an observed value, the target is sized
    proportionally (current * observed / target) when that moves further than
    the fixed amount.
    """
    if action.action == ScalingAction.SCALE_UP:
        target = round_up_instances(current + action.amount)
        if action.target_utilization and observed_utilization is not None:
            proportional = round_up_instances(current * observed_utilization / action.target_utilization)
            target = max(target, proportional)
    elif action.action == ScalingAction.SCALE_DOWN:
        target = round_down_instances(current - action.amount)
        if action.target_utilization and observed_utilization is not None:
            proportional = round_down_instances(current * observed_utilization / action.target_utilization)
            target = min(target, proportional)
    else:
        target = current

    return action.clamp(target)


class ScalingExecutor:
    """
    Applies rule actions to resource pools.

    Holds the authoritative instance count per pool; it changes only after the
    scaler confirms success. A per-pool lock serializes the
    read-compute-actuate sequence so rules targeting the same pool cannot
    lose updates, while different pools proceed independently.
    """

    def __init__(self, store: MetricsStore, evaluator: ConditionEvaluator,
                 scaler: ResourceScaler, event_log: ScalingEventLog,
                 event_bus: Optional[EventBus] = None,
                 initial_instances: Optional[Dict[str, int]] = None,
                 actuation_timeout_seconds: float = 30.0,
                 default_instances: int = 1,
                 clock: Optional[Callable[[], datetime]] = None,
                 max_concurrent_actuations: int = 8):
        if actuation_timeout_seconds <= 0:
            raise ValueError("actuation_timeout_seconds must be positive")

        self.store = store
        self.evaluator = evaluator
        self.scaler = scaler
        self.event_log = event_log
        self.event_bus = event_bus or EventBus()
        self.actuation_timeout = actuation_timeout_seconds
        self.default_instances = default_instances
        self._clock = clock or utc_now

        self._instances: Dict[str, int] = {
            normalize_pool(pool): int(count) for pool, count in (initial_instances or {}).items()
        }
        self._rule_states: Dict[str, RuleState] = {}
        self._last_action: Dict[str, datetime] = {}
        self._pool_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.RLock()

        self._actuation_pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_concurrent_actuations, thread_name_prefix="actuation"
        )
        self._shutdown = False

    # Instance counts

    def get_instances(self, pool: PoolId) -> int:
        """Current instance count of a pool"""
        pool_id = normalize_pool(pool)
        with self._lock:
            return self._instances.get(pool_id, self.default_instances)

    def set_instances(self, pool: PoolId, count: int) -> None:
        """Seed or correct a pool's instance count without actuating"""
        if count < 0:
            raise ValueError("Instance count must be non-negative")
        pool_id = normalize_pool(pool)
        with self._lock:
            self._instances[pool_id] = int(count)

    def instance_counts(self) -> Dict[str, int]:
        """Snapshot of every known pool's instance count"""
        with self._lock:
            return dict(self._instances)

    def pool_lock(self, pool: PoolId) -> threading.Lock:
        """Exclusive section for read-compute-actuate on one pool"""
        pool_id = normalize_pool(pool)
        with self._lock:
            lock = self._pool_locks.get(pool_id)
            if lock is None:
                lock = self._pool_locks[pool_id] = threading.Lock()
            return lock

    # Rule state machine

    def rule_state(self, rule: ScalingRule) -> RuleState:
        """Current state, with an expired cooldown reported as idle"""
        with self._lock:
            state = self._rule_states.get(rule.id, RuleState.IDLE)
            if state == RuleState.COOLING_DOWN and not self.in_cooldown(rule):
                self._rule_states[rule.id] = RuleState.IDLE
                return RuleState.IDLE
            return state

    def _transition(self, rule: ScalingRule, new_state: RuleState) -> None:
        with self._lock:
            current = self.rule_state(rule)
            if new_state not in VALID_TRANSITIONS[current]:
                raise StateTransitionError(
                    f"Invalid transition for rule {rule.id}: {current.value} -> {new_state.value}"
                )
            self._rule_states[rule.id] = new_state

    def last_action_time(self, rule_id: str) -> Optional[datetime]:
        with self._lock:
            return self._last_action.get(rule_id)

    def in_cooldown(self, rule: ScalingRule) -> bool:
        """True while less than cooldown_seconds have passed since the last attempt"""
        return self.cooldown_remaining(rule) > 0

    def cooldown_remaining(self, rule: ScalingRule) -> float:
        """Seconds left before the rule may actuate again"""
        with self._lock:
            last = self._last_action.get(rule.id)
        if last is None:
            return 0.0
        elapsed = (self._clock() - last).total_seconds()
        return max(0.0, rule.cooldown_seconds - elapsed)

    def forget_rule(self, rule_id: str) -> None:
        """Drop state kept for a removed rule"""
        with self._lock:
            self._rule_states.pop(rule_id, None)
            self._last_action.pop(rule_id, None)

    # Evaluation

    def _observed_utilization(self, rule: ScalingRule, sample: Optional[MetricSample]) -> Optional[float]:
        if sample is None or not rule.conditions:
            return None
        try:
            return sample.value(rule.conditions[0].metric)
        except KeyError:
            return None

    def evaluate_rule(self, rule: ScalingRule,
                      budget: Optional[ActionBudget] = None) -> List[ScalingEvent]:
        """
        Evaluate one rule and apply its actions if every condition holds.

        Args:
            rule: Rule to evaluate
            budget: Shared hourly budget; each actuation claims one unit

        Returns:
            Events recorded for this rule (empty when nothing was actuated)
        """
        pool = rule.resource_pool
        with self.pool_lock(pool):
            if self.in_cooldown(rule):
                logger.debug(f"Rule {rule.name} in cooldown for "
                             f"{self.cooldown_remaining(rule):.0f}s more")
                return []

            self._transition(rule, RuleState.EVALUATING)
            try:
                return self._evaluate_and_apply(rule, budget)
            except Exception:
                with self._lock:
                    if self._rule_states.get(rule.id) != RuleState.COOLING_DOWN:
                        self._rule_states[rule.id] = RuleState.IDLE
                raise

    def _evaluate_and_apply(self, rule: ScalingRule,
                            budget: Optional[ActionBudget]) -> List[ScalingEvent]:
        pool = rule.resource_pool
        if not self.evaluator.evaluate_all(rule.conditions, pool):
            self._transition(rule, RuleState.IDLE)
            return []

        sample = self.store.current_metrics(pool)

        events: List[ScalingEvent] = []
        for action in rule.actions:
            try:
                event = self.apply_action(rule, action, sample, budget)
            except RateLimitExceeded:
                logger.info(f"Rule {rule.name} suppressed: hourly scaling limit reached")
                break
            if event is not None:
                events.append(event)

        if events:
            with self._lock:
                self._last_action[rule.id] = self._clock()
            self._transition(rule, RuleState.COOLING_DOWN)
        else:
            self._transition(rule, RuleState.IDLE)

        return events

    def apply_action(self, rule: ScalingRule, action: ScalingActionConfig,
                     sample: Optional[MetricSample],
                     budget: Optional[ActionBudget] = None) -> Optional[ScalingEvent]:
        """
        Apply one action of a rule whose conditions hold.

        Callers hold the pool lock and have moved the rule out of IDLE. The
        target is computed from the pool's current count, so consecutive
        actions build on each other.

        Returns:
            The recorded event, or None when the target equals the current count

        Raises:
            RateLimitExceeded: If the budget has no unit left for this actuation
        """
        pool = rule.resource_pool
        current = self.get_instances(pool)
        target = compute_target(current, action, self._observed_utilization(rule, sample))
        if target == current:
            logger.debug(f"Rule {rule.name}: {pool} already at {current}, nothing to do")
            return None

        if budget is not None:
            budget.claim()

        if self.rule_state(rule) != RuleState.ACTUATING:
            self._transition(rule, RuleState.ACTUATING)

        return self.actuate(
            pool, action.action, current, target,
            reason=f"Rule: {rule.name}", rule_id=rule.id,
            metrics=sample.snapshot() if sample is not None else {},
        )

    def planned_actuations(self, rule: ScalingRule,
                           projected: Optional[Dict[str, int]] = None) -> int:
        """
        Number of actuations the rule would make if evaluated now.

        Read-only: nothing is actuated and no state changes. `projected` holds
        instance counts expected after higher-priority rules have acted; it
        is updated with this rule's targets.
        """
        if projected is None:
            projected = {}
        pool = rule.resource_pool
        if self.in_cooldown(rule) or not self.evaluator.evaluate_all(rule.conditions, pool):
            return 0

        observed = self._observed_utilization(rule, self.store.current_metrics(pool))
        count = 0
        for action in rule.actions:
            current = projected.get(pool, self.get_instances(pool))
            target = compute_target(current, action, observed)
            if target != current:
                projected[pool] = target
                count += 1
        return count

    # Actuation

    def _call_scaler(self, pool: str, target: int) -> None:
        if self._shutdown:
            raise ActuationFailure("Executor has been shut down")

        future = self._actuation_pool.submit(self.scaler.scale_resource, pool, target)
        try:
            result = future.result(timeout=self.actuation_timeout)
        except concurrent.futures.TimeoutError:
            raise ActuationFailure(
                f"Scaling {pool} to {target} timed out after {self.actuation_timeout:.1f}s"
            )
        except Exception as e:
            raise ActuationFailure(str(e) or e.__class__.__name__) from e

        if result is False:
            raise ActuationFailure(f"Scaler refused to scale {pool} to {target}")

    def actuate(self, pool: PoolId, action: ScalingAction, current: int, target: int,
                reason: str, rule_id: str, metrics: Dict[str, float]) -> ScalingEvent:
        """
        Call the scaler once and record the outcome.

        Callers hold the pool lock. The local count is updated only after the
        scaler confirms success.
        """
        pool_id = normalize_pool(pool)
        started = time.monotonic()
        error = None

        try:
            self._call_scaler(pool_id, target)
            with self._lock:
                self._instances[pool_id] = target
            success = True
        except ActuationFailure as e:
            success = False
            error = str(e)

        duration = time.monotonic() - started
        prefix = "emergency" if rule_id == EMERGENCY_RULE_ID else "event"

        event = ScalingEvent(
            id=f"{prefix}_{uuid.uuid4().hex[:12]}",
            timestamp=self._clock(),
            resource_pool=pool_id,
            action=action,
            reason=reason,
            rule_id=rule_id,
            before_instances=current,
            after_instances=target,
            metrics=dict(metrics),
            success=success,
            error=error,
            duration_seconds=duration,
        )

        if success:
            logger.info(f"Scaling executed: {pool_id} from {current} to {target} instances ({reason})")
        else:
            logger.error(f"Scaling failed: {pool_id} from {current} to {target}: {error}")

        self.event_log.append(event)
        self.event_bus.publish(event)
        return event

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting actuations; in-flight calls finish when wait is True"""
        self._shutdown = True
        self._actuation_pool.shutdown(wait=wait)
