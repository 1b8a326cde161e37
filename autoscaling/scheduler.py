"""
Periodic evaluation driver.

Each tick checks the hourly action cap, reserves what is left of it for
enabled rules in global priority order, evaluates those rules per pool, and
always runs the emergency override. Pools are evaluated
concurrently, one task per pool, and every task is joined before the tick
returns so ticks never overlap.
"""

import concurrent.futures
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
import logging

from .emergency import EmergencyOverride
from .events import ScalingEventLog
from .executor import ScalingExecutor
from .metrics_store import MetricsStore
from .models import ScalingEvent, ScalingRule, utc_now
from .rate_limit import ActionBudget
from .registry import RuleRegistry

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW = timedelta(hours=1)


@dataclass
class TickResult:
    """Outcome of one evaluation tick"""
    timestamp: datetime
    events: List[ScalingEvent] = field(default_factory=list)
    rate_limited: bool = False
    skipped: bool = False
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def emergency_events(self) -> List[ScalingEvent]:
        return [e for e in self.events if e.is_emergency]

    @property
    def rule_events(self) -> List[ScalingEvent]:
        return [e for e in self.events if not e.is_emergency]


class EvaluationScheduler:
    """
    Orchestrates the registry, executor and emergency override on a timer.

    Holds no pool-specific logic of its own.
    """

    def __init__(self, registry: RuleRegistry, store: MetricsStore,
                 executor: ScalingExecutor, emergency: EmergencyOverride,
                 event_log: ScalingEventLog,
                 evaluation_interval_seconds: float = 60.0,
                 max_scaling_events_per_hour: int = 10,
                 enabled: bool = True,
                 max_parallel_pools: int = 8,
                 clock: Optional[Callable[[], datetime]] = None):
        if evaluation_interval_seconds <= 0:
            raise ValueError("evaluation_interval_seconds must be positive")
        if max_scaling_events_per_hour < 0:
            raise ValueError("max_scaling_events_per_hour must be non-negative")

        self.registry = registry
        self.store = store
        self.executor = executor
        self.emergency = emergency
        self.event_log = event_log
        self.evaluation_interval = evaluation_interval_seconds
        self.max_scaling_events_per_hour = max_scaling_events_per_hour
        self.enabled = enabled
        self._clock = clock or utc_now

        self._tick_lock = threading.Lock()
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._pool_executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_parallel_pools, thread_name_prefix="pool-eval"
        )

        self.tick_count = 0
        self.last_tick: Optional[datetime] = None

    def _group_by_pool(self, rules: List[ScalingRule]) -> "OrderedDict[str, List[ScalingRule]]":
        grouped: "OrderedDict[str, List[ScalingRule]]" = OrderedDict()
        for rule in rules:
            grouped.setdefault(rule.resource_pool, []).append(rule)
        return grouped

    def _reserve_budget(self, rules: List[ScalingRule],
                        budget: ActionBudget) -> Dict[str, ActionBudget]:
        """
        Hand out the tick's budget to rules in priority order.

        Runs serially before pools fan out, so a slow actuation on one pool
        cannot let a lower-priority rule on another pool claim a unit first.
        """
        projected: Dict[str, int] = {}
        allowances: Dict[str, ActionBudget] = {}

        for rule in rules:
            try:
                wanted = self.executor.planned_actuations(rule, projected)
            except Exception as e:
                logger.error(f"Error planning rule {rule.name} ({rule.id}): {e}")
                wanted = 0

            granted = min(wanted, budget.remaining)
            for _ in range(granted):
                budget.claim()
            if granted < wanted:
                logger.info(f"Rule {rule.name} limited to {granted} of {wanted} actions: "
                            f"hourly scaling limit reached")
            allowances[rule.id] = ActionBudget(granted)

        return allowances

    def _evaluate_pool(self, pool: str, rules: List[ScalingRule],
                       allowances: Dict[str, ActionBudget]) -> List[ScalingEvent]:
        events: List[ScalingEvent] = []

        for rule in rules:
            try:
                events.extend(self.executor.evaluate_rule(rule, allowances.get(rule.id, ActionBudget(0))))
            except Exception as e:
                logger.error(f"Error evaluating rule {rule.name} ({rule.id}) on {pool}: {e}")

        event = self.emergency.check(pool)
        if event is not None:
            events.append(event)

        return events

    def tick(self) -> TickResult:
        """Run one evaluation pass and wait for every pool to finish"""
        now = self._clock()
        if not self.enabled:
            return TickResult(timestamp=now, skipped=True)

        with self._tick_lock:
            budget = ActionBudget.from_event_log(
                self.event_log, self.max_scaling_events_per_hour, RATE_LIMIT_WINDOW, self._clock
            )
            result = TickResult(timestamp=now, rate_limited=budget.exhausted)

            if result.rate_limited:
                logger.warning("Max scaling events per hour reached, skipping rule evaluation")
                rules = []
            else:
                rules = self.registry.list_enabled_rules()

            allowances = self._reserve_budget(rules, budget)
            rules_by_pool = self._group_by_pool(rules)
            pools = list(rules_by_pool)
            pools.extend(pool for pool in self.store.pools() if pool not in rules_by_pool)

            futures = {
                self._pool_executor.submit(
                    self._evaluate_pool, pool, rules_by_pool.get(pool, []), allowances
                ): pool
                for pool in pools
            }

            for future in concurrent.futures.as_completed(futures):
                pool = futures[future]
                try:
                    result.events.extend(future.result())
                except Exception as e:
                    logger.error(f"Evaluation of pool {pool} failed: {e}")
                    result.errors[pool] = str(e)

            result.events.sort(key=lambda e: e.timestamp)

            with self._lock:
                self.tick_count += 1
                self.last_tick = now

        if result.events:
            logger.debug(f"Tick produced {len(result.events)} scaling event(s)")
        return result

    # Background loop

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start ticking in a background thread"""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            if not self.enabled:
                logger.info("Auto-scaling disabled; evaluation not started")
                return

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, name="EvaluationScheduler", daemon=True
            )
            self._thread.start()
            logger.info(f"Auto-scaling evaluation started (every {self.evaluation_interval:.0f}s)")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in auto-scaling evaluation loop: {e}")
            self._stop_event.wait(self.evaluation_interval)

    def stop(self, wait: bool = True) -> None:
        """Stop ticking; with wait, the tick in progress finishes first"""
        with self._lock:
            thread = self._thread
            self._stop_event.set()

        if thread is not None and wait:
            thread.join()

        with self._lock:
            self._thread = None
        logger.info("Auto-scaling evaluation stopped")

    def shutdown(self) -> None:
        """Stop the loop and release worker threads"""
        self.stop(wait=True)
        self._pool_executor.shutdown(wait=True)
