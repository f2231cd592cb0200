import asyncio

import pytest

from alert_engine.dispatcher.notification_dispatcher import NotificationDispatcher
from alert_engine.evaluator.failing_period_state_machine import RuleStateManager
from alert_engine.exception import RuleNotFoundError, TelemetryQueryError
from alert_engine.model.enum.alert_enum import AlertState, EvaluationOutcome
from alert_engine.registry.rule_registry import RuleRegistry
from alert_engine.scheduler.evaluation_scheduler import EvaluationScheduler
from alert_engine.schema.telemetry_schema import AggregateResult
from alert_engine.util import engine_metrics
from alert_engine.util.engine_metrics import EngineMetrics

SINGLE_PERIOD = {"number_of_evaluation_periods": 1, "min_failing_periods_to_alert": 1}


def _build(rule_dict, telemetry, notifiers=(), rules=None, **kwargs):
    state_manager = RuleStateManager()
    registry = RuleRegistry(state_manager=state_manager)
    for raw in rules or [rule_dict]:
        registry.upsert(raw)
    metrics = EngineMetrics()
    dispatcher = NotificationDispatcher(notifiers=notifiers, metrics=metrics)
    options = {"backoff_base_sec": 0.0, "backoff_max_sec": 0.0, "max_attempts": 3, **kwargs}
    scheduler = EvaluationScheduler(
        registry=registry,
        telemetry_client=telemetry,
        state_manager=state_manager,
        dispatcher=dispatcher,
        metrics=metrics,
        **options,
    )
    return scheduler, registry, state_manager, metrics


async def _wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestTick:

    def test_when_new_rule_then_enqueued_and_next_due_fixed_rate(self, rule_dict, mock_telemetry_client):
        # Arrange
        scheduler, *_ = _build(rule_dict, mock_telemetry_client)

        # Act
        enqueued = scheduler.tick(1000.0)

        # Assert
        assert enqueued == ["cpu_high"]
        assert scheduler.next_due("cpu_high") == 1060.0
        assert scheduler.in_flight == frozenset({"cpu_high"})

    def test_when_not_due_then_nothing_enqueued(self, rule_dict, mock_telemetry_client):
        # Arrange
        scheduler, *_ = _build(rule_dict, mock_telemetry_client)
        scheduler.tick(1000.0)

        # Act
        enqueued = scheduler.tick(1030.0)

        # Assert
        assert enqueued == []
        assert scheduler.next_due("cpu_high") == 1060.0

    def test_when_previous_evaluation_in_flight_then_tick_skipped(self, rule_dict, mock_telemetry_client):
        """An overlapping tick is skipped, not queued behind the running one"""
        # Arrange
        scheduler, _, _, metrics = _build(rule_dict, mock_telemetry_client)
        scheduler.tick(1000.0)

        # Act
        enqueued = scheduler.tick(1060.0)

        # Assert
        assert enqueued == []
        assert scheduler._queue.qsize() == 1
        assert metrics.get(engine_metrics.TICKS_SKIPPED, tag="cpu_high") == 1
        assert scheduler.next_due("cpu_high") == 1120.0

    def test_when_ticks_missed_then_only_latest_scheduled(self, rule_dict, mock_telemetry_client):
        """Fixed rate: missed ticks are collapsed, next due stays on the original grid"""
        # Arrange
        scheduler, *_ = _build(rule_dict, mock_telemetry_client)
        scheduler.tick(1000.0)
        scheduler._queue.get_nowait()
        scheduler._in_flight.discard("cpu_high")

        # Act
        enqueued = scheduler.tick(1190.0)

        # Assert
        assert enqueued == ["cpu_high"]
        assert scheduler._queue.qsize() == 1
        assert scheduler.next_due("cpu_high") == 1240.0

    def test_when_rule_disabled_then_never_enqueued(self, rule_dict, mock_telemetry_client):
        # Arrange
        rule_dict["enabled"] = False
        scheduler, *_ = _build(rule_dict, mock_telemetry_client)

        # Act
        enqueued = scheduler.tick(1000.0)

        # Assert
        assert enqueued == []
        assert scheduler.next_due("cpu_high") is None

    def test_when_rule_removed_then_schedule_forgotten(self, rule_dict, mock_telemetry_client):
        # Arrange
        scheduler, registry, *_ = _build(rule_dict, mock_telemetry_client)
        scheduler.tick(1000.0)

        # Act
        registry.remove("cpu_high")
        scheduler.tick(1060.0)

        # Assert
        assert scheduler.next_due("cpu_high") is None

    def test_when_frequency_changed_then_reanchored_on_last_start(self, rule_dict, mock_telemetry_client):
        # Arrange
        scheduler, registry, *_ = _build(rule_dict, mock_telemetry_client)
        scheduler.tick(1000.0)
        scheduler._queue.get_nowait()
        scheduler._in_flight.discard("cpu_high")

        # Act
        registry.upsert({**rule_dict, "frequency": "30s"})
        enqueued = scheduler.tick(1031.0)

        # Assert
        assert enqueued == ["cpu_high"]
        assert scheduler.next_due("cpu_high") == 1060.0


class TestEvaluateRule:

    @pytest.mark.asyncio
    async def test_when_condition_met_then_state_fires_and_channel_notified(
        self, rule_dict, mock_telemetry_client, notifier_factory
    ):
        # Arrange
        rule_dict["failing_periods"] = SINGLE_PERIOD
        mock_telemetry_client.query.return_value = AggregateResult(series=[90.0, 95.0])
        webhook = notifier_factory("ops_webhook")
        scheduler, registry, state_manager, metrics = _build(rule_dict, mock_telemetry_client, notifiers=[webhook])

        # Act
        evaluation = await scheduler.evaluate_rule(registry.get("cpu_high"))

        # Assert
        assert evaluation.outcome == EvaluationOutcome.MET
        record = state_manager.get("cpu_high")
        assert record.state == AlertState.FIRING
        assert record.last_notified_state == AlertState.FIRING
        webhook.send.assert_awaited_once()
        event = webhook.send.await_args.args[0]
        assert event.new_state == AlertState.FIRING
        assert metrics.get(engine_metrics.TRANSITIONS) == 1

    @pytest.mark.asyncio
    async def test_when_query_keeps_failing_then_retried_and_indeterminate(self, rule_dict, mock_telemetry_client):
        """Bounded retries, then an Indeterminate gap, never a crash"""
        # Arrange
        mock_telemetry_client.query.side_effect = TelemetryQueryError("backend unavailable")
        scheduler, registry, state_manager, metrics = _build(rule_dict, mock_telemetry_client, max_attempts=3)

        # Act
        evaluation = await scheduler.evaluate_rule(registry.get("cpu_high"))

        # Assert
        assert mock_telemetry_client.query.await_count == 3
        assert evaluation.outcome == EvaluationOutcome.INDETERMINATE
        assert "backend unavailable" in evaluation.error
        record = state_manager.get("cpu_high")
        assert list(record.history) == [EvaluationOutcome.INDETERMINATE]
        assert record.state == AlertState.RESOLVED
        assert metrics.get(engine_metrics.TELEMETRY_FAILURES) == 3
        assert metrics.get(engine_metrics.INDETERMINATE) == 1

    @pytest.mark.asyncio
    async def test_when_query_fails_once_then_retry_succeeds(self, rule_dict, mock_telemetry_client):
        # Arrange
        mock_telemetry_client.query.side_effect = [
            TelemetryQueryError("connection reset"),
            AggregateResult(series=[90.0]),
        ]
        scheduler, registry, state_manager, _ = _build(rule_dict, mock_telemetry_client)

        # Act
        evaluation = await scheduler.evaluate_rule(registry.get("cpu_high"))

        # Assert
        assert mock_telemetry_client.query.await_count == 2
        assert evaluation.outcome == EvaluationOutcome.MET
        assert list(state_manager.get("cpu_high").history) == [EvaluationOutcome.MET]

    @pytest.mark.asyncio
    async def test_when_query_hangs_then_timeout_yields_indeterminate(self, rule_dict, mock_telemetry_client):
        # Arrange
        async def slow_query(*args, **kwargs):
            await asyncio.sleep(1.0)
            return AggregateResult(series=[90.0])

        mock_telemetry_client.query.side_effect = slow_query
        scheduler, registry, *_ = _build(rule_dict, mock_telemetry_client, query_timeout_sec=0.01, max_attempts=1)

        # Act
        evaluation = await scheduler.evaluate_rule(registry.get("cpu_high"))

        # Assert
        assert evaluation.outcome == EvaluationOutcome.INDETERMINATE
        assert "timed out" in evaluation.error

    @pytest.mark.asyncio
    async def test_when_rule_removed_during_query_then_result_discarded(self, rule_dict, mock_telemetry_client):
        # Arrange
        scheduler, registry, state_manager, _ = _build(rule_dict, mock_telemetry_client)
        rule = registry.get("cpu_high")

        async def query_then_remove(*args, **kwargs):
            registry.remove("cpu_high")
            return AggregateResult(series=[90.0])

        mock_telemetry_client.query.side_effect = query_then_remove

        # Act
        await scheduler.evaluate_rule(rule)

        # Assert
        assert state_manager.get("cpu_high") is None

    @pytest.mark.asyncio
    async def test_when_rule_re_added_during_query_then_result_discarded(self, rule_dict, mock_telemetry_client):
        # Arrange
        scheduler, registry, state_manager, _ = _build(rule_dict, mock_telemetry_client)
        rule = registry.get("cpu_high")

        async def query_then_re_add(*args, **kwargs):
            registry.remove("cpu_high")
            registry.upsert(rule_dict)
            return AggregateResult(series=[90.0])

        mock_telemetry_client.query.side_effect = query_then_re_add

        # Act
        await scheduler.evaluate_rule(rule)

        # Assert
        assert "cpu_high" in registry
        assert state_manager.get("cpu_high") is None

    @pytest.mark.asyncio
    async def test_when_rule_replaced_during_query_then_result_applied(self, rule_dict, mock_telemetry_client):
        # Arrange
        scheduler, registry, state_manager, _ = _build(rule_dict, mock_telemetry_client)
        rule = registry.get("cpu_high")

        async def query_then_replace(*args, **kwargs):
            registry.upsert({**rule_dict, "severity": "CRITICAL"})
            return AggregateResult(series=[90.0])

        mock_telemetry_client.query.side_effect = query_then_replace

        # Act
        await scheduler.evaluate_rule(rule)

        # Assert
        assert list(state_manager.get("cpu_high").history) == [EvaluationOutcome.MET]

    @pytest.mark.asyncio
    async def test_when_two_rules_share_timing_then_states_isolated(self, rule_dict, mock_telemetry_client):
        # Arrange
        disk = {**rule_dict, "name": "disk_full"}

        async def query(window_start, window_end, descriptor):
            await asyncio.sleep(0)
            return AggregateResult(series=[95.0] if descriptor.rule_name == "cpu_high" else [5.0])

        mock_telemetry_client.query.side_effect = query
        scheduler, _, state_manager, _ = _build(rule_dict, mock_telemetry_client, rules=[rule_dict, disk])

        # Act
        await asyncio.gather(scheduler.evaluate_now("cpu_high"), scheduler.evaluate_now("disk_full"))

        # Assert
        assert list(state_manager.get("cpu_high").history) == [EvaluationOutcome.MET]
        assert list(state_manager.get("disk_full").history) == [EvaluationOutcome.NOT_MET]
        assert state_manager.get_state("cpu_high") == AlertState.PENDING
        assert state_manager.get_state("disk_full") == AlertState.RESOLVED


class TestEvaluateNow:

    @pytest.mark.asyncio
    async def test_when_unknown_rule_then_rule_not_found(self, rule_dict, mock_telemetry_client):
        # Arrange
        scheduler, *_ = _build(rule_dict, mock_telemetry_client)

        # Act / Assert
        with pytest.raises(RuleNotFoundError):
            await scheduler.evaluate_now("missing")

    @pytest.mark.asyncio
    async def test_when_evaluation_in_flight_then_second_run_skipped(self, rule_dict, mock_telemetry_client):
        """No double history entry while a slow query is still running"""
        # Arrange
        release = asyncio.Event()

        async def blocking_query(*args, **kwargs):
            await release.wait()
            return AggregateResult(series=[90.0])

        mock_telemetry_client.query.side_effect = blocking_query
        scheduler, _, state_manager, metrics = _build(rule_dict, mock_telemetry_client)
        first = asyncio.create_task(scheduler.evaluate_now("cpu_high"))
        await _wait_until(lambda: mock_telemetry_client.query.await_count == 1)

        # Act
        second = await scheduler.evaluate_now("cpu_high")
        ticked = scheduler.tick()
        release.set()
        await first

        # Assert
        assert second is None
        assert ticked == []
        assert list(state_manager.get("cpu_high").history) == [EvaluationOutcome.MET]
        assert metrics.get(engine_metrics.TICKS_SKIPPED, tag="cpu_high") == 2
        assert scheduler.in_flight == frozenset()


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_when_started_then_rule_evaluated_and_stop_waits_for_in_flight(
        self, rule_dict, mock_telemetry_client
    ):
        # Arrange
        async def slow_query(*args, **kwargs):
            await asyncio.sleep(0.05)
            return AggregateResult(series=[90.0])

        mock_telemetry_client.query.side_effect = slow_query
        scheduler, _, state_manager, _ = _build(
            rule_dict, mock_telemetry_client, concurrency=2, poll_interval_sec=0.01, shutdown_grace_sec=2.0
        )

        # Act
        scheduler.start()
        await _wait_until(lambda: "cpu_high" in scheduler.in_flight)
        await scheduler.stop()

        # Assert
        assert scheduler.is_running is False
        assert list(state_manager.get("cpu_high").history) == [EvaluationOutcome.MET]

    @pytest.mark.asyncio
    async def test_when_grace_period_expires_then_evaluation_cancelled_without_state_change(
        self, rule_dict, mock_telemetry_client
    ):
        # Arrange
        async def hanging_query(*args, **kwargs):
            await asyncio.Event().wait()

        mock_telemetry_client.query.side_effect = hanging_query
        scheduler, _, state_manager, _ = _build(
            rule_dict,
            mock_telemetry_client,
            poll_interval_sec=0.01,
            query_timeout_sec=30.0,
            shutdown_grace_sec=0.05,
        )

        # Act
        scheduler.start()
        await _wait_until(lambda: mock_telemetry_client.query.await_count == 1)
        await scheduler.stop()

        # Assert
        assert state_manager.get("cpu_high") is None
        assert scheduler.in_flight == frozenset()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_when_grace_period_expires_then_queued_evaluations_dropped(self, rule_dict, mock_telemetry_client):
        # Arrange
        async def hanging_query(*args, **kwargs):
            await asyncio.Event().wait()

        mock_telemetry_client.query.side_effect = hanging_query
        disk = {**rule_dict, "name": "disk_full"}
        scheduler, _, state_manager, _ = _build(
            rule_dict,
            mock_telemetry_client,
            rules=[rule_dict, disk],
            concurrency=1,
            poll_interval_sec=0.01,
            query_timeout_sec=30.0,
            shutdown_grace_sec=0.05,
        )

        # Act
        scheduler.start()
        await _wait_until(lambda: mock_telemetry_client.query.await_count == 1 and len(scheduler.in_flight) == 2)
        await scheduler.stop()

        # Assert
        assert scheduler.in_flight == frozenset()
        assert scheduler._queue.empty()
        assert state_manager.get("cpu_high") is None
        assert state_manager.get("disk_full") is None
