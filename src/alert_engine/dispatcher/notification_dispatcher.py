import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from alert_engine.exception import ConfigurationDriftError, DispatchError
from alert_engine.model.enum.alert_enum import AlertSeverity, AlertState
from alert_engine.schema.notification_schema import NotificationEvent
from alert_engine.util import engine_metrics
from alert_engine.util.engine_metrics import EngineMetrics
from alert_engine.util.notifier.base import BaseNotifier


@dataclass
class DispatchReport:
    rule_name: str
    sequence: int
    new_state: AlertState
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    duplicate: bool = False

    @property
    def success_count(self) -> int:
        return len(self.delivered)


class NotificationDispatcher:
    """
    Fans a NotificationEvent out to the channels of its rule.

    - Every channel is attempted independently; one failure never blocks another
    - At most one dispatch per (rule, transition sequence, target state)
    - Unknown channel IDs are configuration drift: logged and skipped
    - Failed deliveries are logged and counted, never retried here
    """

    def __init__(self, notifiers: Iterable[BaseNotifier] = (), metrics: EngineMetrics | None = None):
        self.logger = logging.getLogger(__class__.__name__)
        self.metrics = metrics or EngineMetrics()
        self.channels: dict[str, BaseNotifier] = {}
        self._last_dispatched: dict[str, tuple[int, AlertState]] = {}

        for notifier in notifiers:
            self.register_channel(notifier)

    def register_channel(self, notifier: BaseNotifier) -> None:
        if notifier.channel_id in self.channels:
            self.logger.warning(f"[DISPATCH] Channel '{notifier.channel_id}' re-registered")
        self.channels[notifier.channel_id] = notifier

    def unregister_channel(self, channel_id: str) -> None:
        self.channels.pop(channel_id, None)

    def forget(self, rule_name: str) -> None:
        """Drop dedup memory of a removed rule"""
        self._last_dispatched.pop(rule_name, None)

    async def dispatch(self, event: NotificationEvent, channel_ids: Iterable[str]) -> DispatchReport:
        report = DispatchReport(rule_name=event.rule_name, sequence=event.sequence, new_state=event.new_state)

        dedup_key = (event.sequence, event.new_state)
        if self._last_dispatched.get(event.rule_name) == dedup_key:
            report.duplicate = True
            self.metrics.increment(engine_metrics.DISPATCH_DUPLICATES, tag=event.rule_name)
            self.logger.info(f"[DISPATCH] {event.rule_name}: seq={event.sequence} {event.new_state} already sent")
            return report
        self._last_dispatched[event.rule_name] = dedup_key

        targets: list[BaseNotifier] = []
        for channel_id in sorted(set(channel_ids)):
            notifier = self.channels.get(channel_id)
            if notifier is None:
                drift = ConfigurationDriftError(
                    f"Rule '{event.rule_name}' references unknown channel '{channel_id}'", channel_id=channel_id
                )
                self.logger.warning(f"[DISPATCH] {drift}")
                self.metrics.increment(engine_metrics.CONFIGURATION_DRIFT, tag=channel_id)
                report.skipped.append(channel_id)
                continue
            if not notifier.enabled:
                self.logger.debug(f"[DISPATCH] Channel '{channel_id}' disabled, skipping")
                report.skipped.append(channel_id)
                continue
            targets.append(notifier)

        if not targets:
            self.logger.warning(f"[DISPATCH] {event.rule_name}: no deliverable channels for {event.new_state}")
            return report

        self._log_event(event)

        results = await asyncio.gather(*(self._send_one(n, event) for n in targets), return_exceptions=True)

        for notifier, result in zip(targets, results):
            if result is True:
                report.delivered.append(notifier.channel_id)
                self.metrics.increment(engine_metrics.DISPATCHED, tag=notifier.channel_id)
                continue

            if isinstance(result, BaseException):
                error = DispatchError(str(result), channel_id=notifier.channel_id)
            else:
                error = DispatchError("channel reported failure", channel_id=notifier.channel_id)
            report.failed[notifier.channel_id] = str(error)
            self.metrics.increment(engine_metrics.DISPATCH_FAILURES, tag=notifier.channel_id)
            self.logger.error(f"[DISPATCH] [{notifier.channel_id}] {event.rule_name}: {error}")

        self.logger.info(
            f"[DISPATCH] {event.rule_name} → {event.new_state}: "
            f"{report.success_count}/{len(targets)} delivered, skipped={report.skipped}"
        )
        return report

    async def _send_one(self, notifier: BaseNotifier, event: NotificationEvent) -> bool:
        return await notifier.send(event)

    def _log_event(self, event: NotificationEvent) -> None:
        if event.new_state != AlertState.FIRING:
            self.logger.info(f"[ALERT] {event.description}")
            return

        match event.severity:
            case AlertSeverity.CRITICAL | AlertSeverity.ERROR:
                self.logger.error(f"[ALERT] {event.description}")
            case AlertSeverity.WARNING:
                self.logger.warning(f"[ALERT] {event.description}")
            case _:
                self.logger.info(f"[ALERT] {event.description}")
