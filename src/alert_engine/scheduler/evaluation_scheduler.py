import asyncio
import logging
from datetime import datetime
from typing import Callable

from alert_engine.dispatcher.notification_dispatcher import NotificationDispatcher
from alert_engine.evaluator.criteria_evaluator import CriteriaEvaluator, build_query_descriptor
from alert_engine.evaluator.failing_period_state_machine import RuleStateManager
from alert_engine.exception import RuleNotFoundError, TelemetryQueryError
from alert_engine.registry.rule_registry import RuleRegistry
from alert_engine.schema.alert_rule_schema import AlertRule
from alert_engine.schema.telemetry_schema import AggregateResult, EvaluationResult, QueryDescriptor
from alert_engine.telemetry.base import TelemetryClient
from alert_engine.util import engine_metrics
from alert_engine.util.decorator.retry import async_retry
from alert_engine.util.engine_metrics import EngineMetrics
from alert_engine.util.logging_noise import install_rate_limit
from alert_engine.util.time_util import now_utc

logger = logging.getLogger("EvaluationScheduler")
skip_logger = logging.getLogger("EvaluationScheduler.skip")
install_rate_limit(skip_logger, period_sec=30.0)


class EvaluationScheduler:
    """
    Fixed-rate, per-rule evaluation scheduler (worker-pool model)

    Guarantees:
    - Each rule runs on its own clock: next due = last scheduled start + frequency
    - Fixed number of worker tasks regardless of rule count
    - At most one in-flight evaluation per rule; overlapping ticks are skipped
    - Telemetry failures degrade to an Indeterminate outcome, never crash the loop
    - A cancelled evaluation leaves rule state untouched
    """

    def __init__(
        self,
        registry: RuleRegistry,
        telemetry_client: TelemetryClient,
        state_manager: RuleStateManager,
        dispatcher: NotificationDispatcher,
        criteria_evaluator: CriteriaEvaluator | None = None,
        *,
        concurrency: int = 8,
        poll_interval_sec: float = 1.0,
        query_timeout_sec: float = 10.0,
        max_attempts: int = 3,
        backoff_base_sec: float = 0.5,
        backoff_max_sec: float = 5.0,
        shutdown_grace_sec: float = 10.0,
        metrics: EngineMetrics | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.registry = registry
        self.telemetry_client = telemetry_client
        self.state_manager = state_manager
        self.dispatcher = dispatcher
        self.criteria_evaluator = criteria_evaluator or CriteriaEvaluator(clock=clock)
        self.metrics = metrics or EngineMetrics()
        self.clock = clock

        self.concurrency = int(concurrency)
        self.poll_interval_sec = float(poll_interval_sec)
        self.query_timeout_sec = float(query_timeout_sec)
        self.shutdown_grace_sec = float(shutdown_grace_sec)

        self._query_with_retry = async_retry(
            max_retries=max_attempts,
            base_delay=backoff_base_sec,
            max_delay=backoff_max_sec,
            logger=logger,
            key_name="rule_name",
            retry_on=(TelemetryQueryError,),
        )(self._query_once)

        self._queue: asyncio.Queue[AlertRule] = asyncio.Queue()
        self._in_flight: set[str] = set()
        self._next_due: dict[str, float] = {}
        self._last_start: dict[str, float] = {}
        self._frequency: dict[str, float] = {}

        self._workers: list[asyncio.Task] = []
        self._ticker: asyncio.Task | None = None
        self._stopping: bool = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        if self._ticker and not self._ticker.done():
            logger.warning("[Scheduler] already running")
            return self._ticker

        self._stopping = False
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"evaluation-worker-{i}") for i in range(self.concurrency)
        ]
        self._ticker = asyncio.create_task(self._tick_loop(), name="evaluation-ticker")

        logger.info("=" * 60)
        logger.info("EvaluationScheduler started (worker-pool)")
        logger.info(f"Rules: {len(self.registry)}")
        logger.info(f"Concurrency: {self.concurrency}")
        logger.info(f"Poll interval: {self.poll_interval_sec}s")
        logger.info("=" * 60)
        return self._ticker

    async def run(self) -> None:
        """Start and block until the ticker stops"""
        ticker = self.start()
        try:
            await ticker
        except asyncio.CancelledError:
            if self._stopping:
                return
            logger.info("[Scheduler] Cancelled")
            await self.stop()
            raise

    async def stop(self) -> None:
        """
        Graceful shutdown: stop ticking, let in-flight evaluations finish within
        the grace period, then cancel whatever is still running.
        """
        self._stopping = True

        if self._ticker and not self._ticker.done():
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
        self._ticker = None

        if self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self.shutdown_grace_sec)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[Scheduler] {len(self._in_flight)} evaluation(s) still running after "
                    f"{self.shutdown_grace_sec}s grace period, cancelling: {sorted(self._in_flight)}"
                )

            for worker in self._workers:
                worker.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []

        # Queued but never started; a later start() must not run them
        dropped: list[str] = []
        while not self._queue.empty():
            rule = self._queue.get_nowait()
            self._in_flight.discard(rule.name)
            self._queue.task_done()
            dropped.append(rule.name)
        if dropped:
            logger.info(f"[Scheduler] Dropped {len(dropped)} queued evaluation(s): {sorted(dropped)}")

        logger.info("[Scheduler] Stopped")

    @property
    def is_running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stopping:
            try:
                now = loop.time()
                self.tick(now)
                sleep_time = self._sleep_time(loop.time())
                logger.debug(f"[Scheduler] in_flight={len(self._in_flight)} sleep={sleep_time:.2f}s")
                await asyncio.sleep(sleep_time)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception(f"[Scheduler] tick failed: {exc}")
                await asyncio.sleep(self.poll_interval_sec)

    def tick(self, now: float | None = None) -> list[str]:
        """
        Enqueue every rule whose next due time has arrived.

        Returns:
            Names of rules enqueued on this tick
        """
        if now is None:
            now = asyncio.get_running_loop().time()

        rules = self.registry.snapshot()

        for name in list(self._next_due):
            if name not in rules or not rules[name].enabled:
                self._forget(name)

        enqueued: list[str] = []
        for name, rule in rules.items():
            if not rule.enabled:
                continue

            frequency = rule.frequency.total_seconds()
            due = self._next_due.get(name)
            if due is None:
                due = now
            elif self._frequency.get(name) != frequency:
                # Frequency changed by an upsert: re-anchor on the last start
                due = self._last_start.get(name, now) + frequency

            if now < due:
                self._next_due[name] = due
                self._frequency[name] = frequency
                continue

            # Fixed rate: collapse missed ticks into the most recent one
            missed = int((now - due) // frequency)
            scheduled_start = due + missed * frequency
            self._last_start[name] = scheduled_start
            self._next_due[name] = scheduled_start + frequency
            self._frequency[name] = frequency

            if missed:
                skip_logger.warning(f"[Scheduler] {name}: {missed} tick(s) missed, evaluating latest only")

            if name in self._in_flight:
                self.metrics.increment(engine_metrics.TICKS_SKIPPED, tag=name)
                skip_logger.warning(f"[Scheduler] {name}: previous evaluation still running, tick skipped")
                continue

            self._in_flight.add(name)
            self._queue.put_nowait(rule)
            enqueued.append(name)

        return enqueued

    def next_due(self, rule_name: str) -> float | None:
        return self._next_due.get(rule_name)

    def _sleep_time(self, now: float) -> float:
        if not self._next_due:
            return self.poll_interval_sec
        earliest = min(self._next_due.values())
        return min(max(0.0, earliest - now), self.poll_interval_sec)

    def _forget(self, name: str) -> None:
        self._next_due.pop(name, None)
        self._last_start.pop(name, None)
        self._frequency.pop(name, None)

    async def _worker(self, worker_id: int) -> None:
        while True:
            rule = await self._queue.get()
            try:
                if self._stopping:
                    logger.debug(f"[Worker-{worker_id}] stopping, dropped queued evaluation of {rule.name}")
                    continue
                await self.evaluate_rule(rule)
            except asyncio.CancelledError:
                logger.info(f"[Worker-{worker_id}] evaluation of {rule.name} cancelled")
                raise
            except Exception as exc:
                logger.warning(f"[Worker-{worker_id}] evaluation failed: {rule.name}", exc_info=exc)
            finally:
                self._in_flight.discard(rule.name)
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate_now(self, rule_name: str) -> EvaluationResult | None:
        """
        Evaluate one rule immediately, outside its schedule.

        Returns:
            EvaluationResult, or None if the rule already has an evaluation in flight

        Raises:
            RuleNotFoundError: rule is not registered
        """
        rule = self.registry.get(rule_name)
        if rule is None:
            raise RuleNotFoundError(rule_name)

        if rule_name in self._in_flight:
            self.metrics.increment(engine_metrics.TICKS_SKIPPED, tag=rule_name)
            skip_logger.warning(f"[Scheduler] {rule_name}: evaluation already running, manual run skipped")
            return None

        self._in_flight.add(rule_name)
        try:
            return await self.evaluate_rule(rule)
        finally:
            self._in_flight.discard(rule_name)

    async def evaluate_rule(self, rule: AlertRule) -> EvaluationResult:
        """
        Query → score → update state → dispatch, for one rule.
        State is only mutated after the query completes, in one synchronous step.
        """
        incarnation = self.registry.incarnation(rule.name)
        window_end = self.clock()
        window_start = window_end - rule.window_size
        descriptor = build_query_descriptor(rule)

        result: AggregateResult | None = None
        error: str | None = None
        try:
            result = await self._query_with_retry(
                rule_name=rule.name, window_start=window_start, window_end=window_end, descriptor=descriptor
            )
        except TelemetryQueryError as e:
            error = str(e)
            logger.warning(f"[{rule.name}] Telemetry unavailable, recording Indeterminate: {e}")

        evaluation = self.criteria_evaluator.evaluate(rule, result, window_start, window_end, error)
        self.metrics.increment(engine_metrics.EVALUATIONS, tag=rule.name)
        if evaluation.is_indeterminate:
            self.metrics.increment(engine_metrics.INDETERMINATE, tag=rule.name)

        current_rule = self.registry.get(rule.name)
        if current_rule is None or self.registry.incarnation(rule.name) != incarnation:
            logger.info(f"[{rule.name}] Rule removed during evaluation, result discarded")
            return evaluation

        event = self.state_manager.apply(current_rule, evaluation)
        if event is None:
            return evaluation

        self.metrics.increment(engine_metrics.TRANSITIONS, tag=rule.name)
        report = await self.dispatcher.dispatch(event, current_rule.channels)
        if not report.duplicate:
            self.state_manager.mark_notified(rule.name, event.new_state)

        return evaluation

    async def _query_once(
        self, rule_name: str, window_start: datetime, window_end: datetime, descriptor: QueryDescriptor
    ) -> AggregateResult:
        try:
            return await asyncio.wait_for(
                self.telemetry_client.query(window_start, window_end, descriptor), timeout=self.query_timeout_sec
            )
        except asyncio.TimeoutError as e:
            self.metrics.increment(engine_metrics.TELEMETRY_FAILURES, tag=rule_name)
            raise TelemetryQueryError(
                f"Query timed out after {self.query_timeout_sec}s", rule_name=rule_name
            ) from e
        except TelemetryQueryError:
            self.metrics.increment(engine_metrics.TELEMETRY_FAILURES, tag=rule_name)
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.increment(engine_metrics.TELEMETRY_FAILURES, tag=rule_name)
            raise TelemetryQueryError(f"Query failed: {e}", rule_name=rule_name) from e
