"""
Tests for target computation, the rule state machine and actuation
"""

import threading
import pytest

from autoscaling.conditions import ConditionEvaluator
from autoscaling.events import EventBus, ScalingEventLog
from autoscaling.executor import (
    RuleState, ScalingExecutor, StateTransitionError, compute_target
)
from autoscaling.metrics_store import MetricsStore
from autoscaling.models import (
    ComparisonOperator, MetricSample, ScalingAction, ScalingActionConfig
)
from autoscaling.rate_limit import ActionBudget, RateLimitExceeded
from autoscaling.registry import RuleRegistry

from conftest import RecordingScaler, make_rule


class TestComputeTarget:
    """Test target instance computation"""

    def test_scale_up_and_down(self):
        up = ScalingActionConfig(ScalingAction.SCALE_UP, amount=2, max_instances=10)
        down = ScalingActionConfig(ScalingAction.SCALE_DOWN, amount=1, min_instances=1)

        assert compute_target(3, up) == 5
        assert compute_target(3, down) == 2

    def test_clamped_to_bounds(self):
        """Test results never leave [min_instances, max_instances]"""
        up = ScalingActionConfig(ScalingAction.SCALE_UP, amount=5, max_instances=4)
        down = ScalingActionConfig(ScalingAction.SCALE_DOWN, amount=5, min_instances=2)

        assert compute_target(3, up) == 4
        assert compute_target(3, down) == 2

    def test_maintain(self):
        assert compute_target(3, ScalingActionConfig(ScalingAction.MAINTAIN)) == 3

    def test_target_utilization(self):
        """Test proportional sizing wins when it moves further than amount"""
        up = ScalingActionConfig(ScalingAction.SCALE_UP, amount=1, max_instances=20,
                                 target_utilization=50)
        down = ScalingActionConfig(ScalingAction.SCALE_DOWN, amount=1, target_utilization=50)

        assert compute_target(4, up, observed_utilization=90) == 8    # ceil(4 * 90 / 50)
        assert compute_target(4, up, observed_utilization=55) == 5    # amount wins
        assert compute_target(4, down, observed_utilization=20) == 1  # floor(4 * 20 / 50)


@pytest.fixture
def parts(clock):
    store = MetricsStore(clock=clock)
    log = ScalingEventLog(clock=clock)
    return store, ConditionEvaluator(store, clock), log


def build(parts, clock, scaler=None, **kwargs):
    store, evaluator, log = parts
    kwargs.setdefault("initial_instances", {"api_instances": 2})
    return ScalingExecutor(store, evaluator, scaler or RecordingScaler(), log, clock=clock, **kwargs)


def registered(rule):
    registry = RuleRegistry()
    return registry.get_rule(registry.add_rule(rule))


def feed(store, clock, pool="api_instances", **values):
    store.record_metrics(pool, MetricSample(timestamp=clock(), **values))


class TestScalingExecutor:
    """Test ScalingExecutor"""

    def test_rule_fires_and_records_event(self, parts, clock):
        """Test 2 instances at high CPU become 3 with a matching event"""
        store, _, log = parts
        scaler = RecordingScaler()
        executor = build(parts, clock, scaler)
        rule = registered(make_rule(threshold=70))
        feed(store, clock, cpu=85)

        events = executor.evaluate_rule(rule)

        assert len(events) == 1
        event = events[0]
        assert event.before_instances == 2
        assert event.after_instances == 3
        assert event.success is True
        assert event.rule_id == rule.id
        assert event.id.startswith("event_")
        assert event.metrics["cpu"] == 85
        assert executor.get_instances("api_instances") == 3
        assert scaler.calls == [("api_instances", 3)]
        assert log.recent() == [event]
        executor.shutdown()

    def test_conditions_false_no_event(self, parts, clock):
        store, _, log = parts
        executor = build(parts, clock)
        rule = registered(make_rule(threshold=70))
        feed(store, clock, cpu=40)

        assert executor.evaluate_rule(rule) == []
        assert executor.rule_state(rule) == RuleState.IDLE
        assert len(log) == 0
        executor.shutdown()

    def test_cooldown_blocks_second_action(self, parts, clock):
        """Test a rule does not fire again until its cooldown elapses"""
        store, _, _ = parts
        executor = build(parts, clock)
        rule = registered(make_rule(threshold=70, cooldown=300))
        feed(store, clock, cpu=90)

        assert len(executor.evaluate_rule(rule)) == 1
        assert executor.rule_state(rule) == RuleState.COOLING_DOWN

        clock.advance(60)
        feed(store, clock, cpu=90)
        assert executor.evaluate_rule(rule) == []
        assert executor.cooldown_remaining(rule) == pytest.approx(240)

        clock.advance(241)
        feed(store, clock, cpu=90)
        assert executor.rule_state(rule) == RuleState.IDLE
        assert len(executor.evaluate_rule(rule)) == 1
        assert executor.get_instances("api_instances") == 4
        executor.shutdown()

    def test_at_bound_is_noop(self, parts, clock):
        """Test a rule whose target equals the current count records nothing"""
        store, _, log = parts
        executor = build(parts, clock, initial_instances={"api_instances": 10})
        rule = registered(make_rule(threshold=70, max_instances=10))
        feed(store, clock, cpu=95)

        assert executor.evaluate_rule(rule) == []
        assert len(log) == 0
        assert executor.in_cooldown(rule) is False
        executor.shutdown()

    def test_failed_actuation(self, parts, clock):
        """Test a failure keeps the count, records the error and still cools down"""
        store, _, _ = parts
        executor = build(parts, clock, RecordingScaler(error=RuntimeError("quota exceeded")))
        rule = registered(make_rule(threshold=70))
        feed(store, clock, cpu=90)

        events = executor.evaluate_rule(rule)

        assert len(events) == 1
        assert events[0].success is False
        assert "quota exceeded" in events[0].error
        assert events[0].after_instances == 3
        assert executor.get_instances("api_instances") == 2
        assert executor.in_cooldown(rule) is True
        executor.shutdown()

    def test_scaler_refusal(self, parts, clock):
        store, _, _ = parts
        executor = build(parts, clock, RecordingScaler(result=False))
        rule = registered(make_rule(threshold=70))
        feed(store, clock, cpu=90)

        events = executor.evaluate_rule(rule)

        assert events[0].success is False
        assert executor.get_instances("api_instances") == 2
        executor.shutdown()

    def test_actuation_timeout(self, parts, clock):
        """Test a scaler that hangs is treated as a failure"""
        store, _, _ = parts
        release = threading.Event()
        executor = build(parts, clock, RecordingScaler(delay_event=release),
                         actuation_timeout_seconds=0.05)
        rule = registered(make_rule(threshold=70))
        feed(store, clock, cpu=90)

        try:
            events = executor.evaluate_rule(rule)
        finally:
            release.set()

        assert events[0].success is False
        assert "timed out" in events[0].error
        assert executor.get_instances("api_instances") == 2
        executor.shutdown()

    def test_unknown_pool_defaults_to_one(self, parts, clock):
        executor = build(parts, clock, initial_instances={})

        assert executor.get_instances("gpu_workers") == 1
        executor.shutdown()

    def test_budget_suppresses_actuation(self, parts, clock):
        """Test an exhausted budget stops the rule without an event or cooldown"""
        store, _, log = parts
        executor = build(parts, clock)
        rule = registered(make_rule(threshold=70))
        feed(store, clock, cpu=90)

        assert executor.evaluate_rule(rule, ActionBudget(0)) == []
        assert len(log) == 0
        assert executor.in_cooldown(rule) is False
        executor.shutdown()

    def test_each_action_yields_an_event(self, parts, clock):
        """Test a rule with two actions applies them in order"""
        store, _, _ = parts
        executor = build(parts, clock)
        rule = make_rule(threshold=70)
        rule.actions.append(ScalingActionConfig(ScalingAction.SCALE_UP, amount=2, max_instances=10))
        rule = registered(rule)
        feed(store, clock, cpu=90)

        events = executor.evaluate_rule(rule)

        assert [(e.before_instances, e.after_instances) for e in events] == [(2, 3), (3, 5)]
        executor.shutdown()

    def test_apply_action(self, parts, clock):
        """Test a single action is actuated with the sample's metrics"""
        store, _, log = parts
        executor = build(parts, clock)
        rule = registered(make_rule(threshold=70))
        feed(store, clock, cpu=88)
        executor._transition(rule, RuleState.EVALUATING)

        event = executor.apply_action(rule, rule.actions[0], store.current_metrics("api_instances"))

        assert (event.before_instances, event.after_instances) == (2, 3)
        assert event.metrics["cpu"] == 88
        assert executor.rule_state(rule) == RuleState.ACTUATING
        assert log.recent() == [event]
        executor.shutdown()

    def test_apply_action_noop_and_budget(self, parts, clock):
        store, _, log = parts
        executor = build(parts, clock, initial_instances={"api_instances": 10})
        rule = registered(make_rule(threshold=70, max_instances=10))
        feed(store, clock, cpu=88)
        sample = store.current_metrics("api_instances")

        assert executor.apply_action(rule, rule.actions[0], sample) is None

        executor.set_instances("api_instances", 2)
        with pytest.raises(RateLimitExceeded):
            executor.apply_action(rule, rule.actions[0], sample, ActionBudget(0))
        assert len(log) == 0
        executor.shutdown()

    def test_planned_actuations(self, parts, clock):
        """Test planning counts actions without actuating and tracks projected counts"""
        store, _, log = parts
        scaler = RecordingScaler()
        executor = build(parts, clock, scaler)
        rule = make_rule(threshold=70, max_instances=4)
        rule.actions.append(ScalingActionConfig(ScalingAction.SCALE_UP, amount=5, max_instances=4))
        rule = registered(rule)
        feed(store, clock, cpu=90)
        projected = {}

        assert executor.planned_actuations(rule, projected) == 2
        assert projected == {"api_instances": 4}
        assert executor.planned_actuations(rule, projected) == 0
        assert scaler.calls == []
        assert len(log) == 0

        executor.evaluate_rule(rule)
        assert executor.planned_actuations(rule) == 0  # cooling down
        executor.shutdown()

    def test_scale_down_rule(self, parts, clock):
        store, _, _ = parts
        executor = build(parts, clock, initial_instances={"api_instances": 4})
        rule = registered(make_rule(operator=ComparisonOperator.LT, threshold=20,
                                    action=ScalingAction.SCALE_DOWN, min_instances=2))
        feed(store, clock, cpu=5)

        events = executor.evaluate_rule(rule)

        assert events[0].action == ScalingAction.SCALE_DOWN
        assert executor.get_instances("api_instances") == 3
        executor.shutdown()

    def test_events_published(self, parts, clock):
        store, evaluator, log = parts
        bus = EventBus()
        received = []
        bus.subscribe(received.append)
        executor = ScalingExecutor(store, evaluator, RecordingScaler(), log, event_bus=bus,
                                   initial_instances={"api_instances": 2}, clock=clock)
        feed(store, clock, cpu=90)

        executor.evaluate_rule(registered(make_rule(threshold=70)))

        assert len(received) == 1
        executor.shutdown()

    def test_invalid_transition(self, parts, clock):
        executor = build(parts, clock)
        rule = registered(make_rule())

        with pytest.raises(StateTransitionError):
            executor._transition(rule, RuleState.COOLING_DOWN)
        executor.shutdown()

    def test_concurrent_rules_on_one_pool(self, parts, clock):
        """Test rules on the same pool never lose an update"""
        store, _, log = parts
        executor = build(parts, clock, initial_instances={"api_instances": 1})
        registry = RuleRegistry()
        rules = [registry.get_rule(registry.add_rule(make_rule(name=f"r{i}", threshold=70,
                                                                max_instances=50)))
                 for i in range(10)]
        feed(store, clock, cpu=90)

        threads = [threading.Thread(target=executor.evaluate_rule, args=(r,)) for r in rules]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert executor.get_instances("api_instances") == 11
        assert sorted(e.after_instances for e in log.recent()) == list(range(2, 12))
        executor.shutdown()


class TestScenarios:
    """End-to-end rule scenarios on the API pool"""

    def _run(self, parts, clock, current, max_instances):
        store, _, log = parts
        executor = build(parts, clock, initial_instances={"api_instances": current})
        rule = registered(make_rule(threshold=70, duration=120, max_instances=max_instances))
        for cpu in (75, 78, 82):
            feed(store, clock, cpu=cpu)
            clock.advance(30)
        events = executor.evaluate_rule(rule)
        instances = executor.get_instances("api_instances")
        executor.shutdown()
        return events, instances, log

    def test_sustained_cpu_adds_instance(self, parts, clock):
        events, instances, _ = self._run(parts, clock, current=2, max_instances=10)

        assert instances == 3
        assert len(events) == 1
        assert events[0].success is True
        assert (events[0].before_instances, events[0].after_instances) == (2, 3)

    def test_clamped_at_boundary_records_nothing(self, parts, clock):
        events, instances, log = self._run(parts, clock, current=3, max_instances=3)

        assert instances == 3
        assert events == []
        assert len(log) == 0
