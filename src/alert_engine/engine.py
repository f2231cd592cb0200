import asyncio
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Callable

from alert_engine.dispatcher.notification_dispatcher import DispatchReport, NotificationDispatcher
from alert_engine.evaluator.criteria_evaluator import CriteriaEvaluator
from alert_engine.evaluator.failing_period_state_machine import RuleStateManager
from alert_engine.exception import RuleNotFoundError
from alert_engine.model.enum.alert_enum import AlertState
from alert_engine.model.rule_state import RuleState
from alert_engine.registry.rule_registry import RuleRegistry
from alert_engine.repository.rule_state_repository import RuleStateRepository
from alert_engine.scheduler.evaluation_scheduler import EvaluationScheduler
from alert_engine.schema.alert_rule_schema import AlertRule
from alert_engine.schema.engine_config_schema import EngineConfig
from alert_engine.schema.notification_schema import NotificationEvent
from alert_engine.schema.telemetry_schema import EvaluationResult
from alert_engine.task.checkpoint_task import RuleStateCheckpointTask
from alert_engine.telemetry.base import TelemetryClient
from alert_engine.util import engine_metrics
from alert_engine.util.engine_metrics import EngineMetrics, metrics_report_loop
from alert_engine.util.notifier.base import BaseNotifier
from alert_engine.util.time_util import now_utc

logger = logging.getLogger("AlertEngine")


class AlertEngine:
    """
    Composition root: owns the registry, rule states, scheduler, dispatcher
    and the optional checkpoint job, and exposes their lifecycle.
    """

    def __init__(
        self,
        telemetry_client: TelemetryClient,
        notifiers: Iterable[BaseNotifier] = (),
        config: EngineConfig | None = None,
        checkpoint_repository: RuleStateRepository | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.config = config or EngineConfig()
        self.clock = clock
        self.telemetry_client = telemetry_client

        self.metrics = EngineMetrics()
        self.state_manager = RuleStateManager(clock=clock)
        self.registry = RuleRegistry(state_manager=self.state_manager)
        self.dispatcher = NotificationDispatcher(notifiers=notifiers, metrics=self.metrics)
        self.registry.add_remove_listener(self.dispatcher.forget)
        self.registry.add_remove_listener(self.metrics.drop_tag)

        scheduler_cfg = self.config.SCHEDULER
        telemetry_cfg = self.config.TELEMETRY
        self.scheduler = EvaluationScheduler(
            registry=self.registry,
            telemetry_client=telemetry_client,
            state_manager=self.state_manager,
            dispatcher=self.dispatcher,
            criteria_evaluator=CriteriaEvaluator(clock=clock),
            concurrency=scheduler_cfg.CONCURRENCY,
            poll_interval_sec=scheduler_cfg.POLL_INTERVAL_SEC,
            query_timeout_sec=telemetry_cfg.QUERY_TIMEOUT_SEC,
            max_attempts=telemetry_cfg.MAX_ATTEMPTS,
            backoff_base_sec=telemetry_cfg.BACKOFF_BASE_SEC,
            backoff_max_sec=telemetry_cfg.BACKOFF_MAX_SEC,
            shutdown_grace_sec=scheduler_cfg.SHUTDOWN_GRACE_SEC,
            metrics=self.metrics,
            clock=clock,
        )

        checkpoint_cfg = self.config.CHECKPOINT
        if checkpoint_repository is None and checkpoint_cfg.ENABLED:
            checkpoint_repository = RuleStateRepository(
                dirpath=self.config.PATHS.STATE_DIR, filename=checkpoint_cfg.FILENAME
            )
        self.checkpoint_repository = checkpoint_repository
        self.checkpoint_task: RuleStateCheckpointTask | None = None
        if checkpoint_repository is not None:
            self.checkpoint_task = RuleStateCheckpointTask(
                state_manager=self.state_manager,
                repository=checkpoint_repository,
                interval_sec=checkpoint_cfg.INTERVAL_SEC,
            )

        self._metrics_task: asyncio.Task | None = None
        self._started: bool = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            logger.warning("[ENGINE] already started")
            return

        if self.checkpoint_repository is not None:
            snapshots = await self.checkpoint_repository.load()
            self.state_manager.restore_snapshots(snapshots, known_rules=self.registry.snapshot())
            await self._redispatch_unnotified()

        self.scheduler.start()
        if self.checkpoint_task is not None:
            self.checkpoint_task.start()
        self._metrics_task = asyncio.create_task(
            metrics_report_loop(self.metrics, self.config.METRICS_REPORT_INTERVAL_SEC), name="metrics-report"
        )
        self._started = True
        logger.info(f"[ENGINE] Started with {len(self.registry)} rule(s)")

    async def stop(self) -> None:
        """Stop scheduling, flush the checkpoint and release the telemetry client. Idempotent."""
        if not self._started:
            return
        self._started = False

        await self.scheduler.stop()

        if self.checkpoint_task is not None:
            await self.checkpoint_task.stop()

        if self._metrics_task is not None:
            self._metrics_task.cancel()
            try:
                await self._metrics_task
            except asyncio.CancelledError:
                pass
            self._metrics_task = None

        try:
            await self.telemetry_client.close()
        except Exception as e:
            logger.warning(f"[ENGINE] Telemetry client close failed: {e}")

        logger.info("[ENGINE] Stopped")

    @property
    def is_running(self) -> bool:
        return self._started and self.scheduler.is_running

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def upsert_rule(self, rule: AlertRule | Mapping[str, Any]) -> AlertRule:
        return self.registry.upsert(rule)

    def remove_rule(self, name: str) -> bool:
        return self.registry.remove(name)

    def get_rule(self, name: str) -> AlertRule:
        rule = self.registry.get(name)
        if rule is None:
            raise RuleNotFoundError(name)
        return rule

    def get_rule_state(self, name: str) -> RuleState | None:
        """
        Returns:
            The rule's state, or None if it has not been evaluated yet

        Raises:
            RuleNotFoundError: rule is not registered
        """
        self.get_rule(name)
        return self.state_manager.get(name)

    async def clear_rule(self, name: str) -> DispatchReport | None:
        """
        Operator clear for a rule that does not auto-mitigate.

        Returns:
            Dispatch report of the RESOLVED notification, or None if nothing changed
        """
        rule = self.get_rule(name)
        event = self.state_manager.clear(rule)
        if event is None:
            logger.info(f"[ENGINE] {name}: clear requested but rule is already {AlertState.RESOLVED}")
            return None
        self.metrics.increment(engine_metrics.TRANSITIONS, tag=name)
        return await self._dispatch(rule, event)

    async def evaluate_now(self, name: str) -> EvaluationResult | None:
        return await self.scheduler.evaluate_now(name)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _dispatch(self, rule: AlertRule, event: NotificationEvent) -> DispatchReport:
        report = await self.dispatcher.dispatch(event, rule.channels)
        if not report.duplicate:
            self.state_manager.mark_notified(rule.name, event.new_state)
        return report

    async def _redispatch_unnotified(self) -> None:
        rules = self.registry.snapshot()
        events = self.state_manager.unnotified_events(rules)
        if not events:
            return

        logger.info(f"[ENGINE] Re-dispatching {len(events)} transition(s) not notified before restart")
        for event in events:
            await self._dispatch(rules[event.rule_name], event)

