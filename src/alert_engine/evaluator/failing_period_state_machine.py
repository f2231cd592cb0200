import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Callable

from alert_engine.model.enum.alert_enum import AlertState, EvaluationOutcome
from alert_engine.model.rule_state import RuleState
from alert_engine.schema.alert_rule_schema import AlertRule, StaticThresholdCriteria
from alert_engine.schema.notification_schema import NotificationEvent
from alert_engine.schema.rule_state_schema import RuleStateSnapshot
from alert_engine.schema.telemetry_schema import EvaluationResult
from alert_engine.util.time_util import now_utc


def count_met(history: Sequence[EvaluationOutcome], periods: int) -> int:
    """Number of MET outcomes among the most recent `periods` entries"""
    recent = list(history)[-periods:] if periods > 0 else []
    return sum(1 for outcome in recent if outcome == EvaluationOutcome.MET)


def compute_next_state(
    history: Sequence[EvaluationOutcome],
    min_failing: int,
    periods: int,
    auto_mitigate: bool,
    current_state: AlertState,
) -> AlertState:
    """
    Target state for a rule given its outcome history.

    - met >= M           → FIRING
    - 0 < met < M        → PENDING
    - met == 0           → RESOLVED
    A FIRING rule without auto-mitigation stays FIRING until cleared.
    auto_mitigate only holds FIRING: a PENDING rule never confirmed the
    alert, so it steps back to RESOLVED once met drops to 0.
    """
    if current_state == AlertState.FIRING and not auto_mitigate:
        return AlertState.FIRING

    met = count_met(history, periods)
    if met >= min_failing:
        return AlertState.FIRING
    if met > 0:
        return AlertState.PENDING
    return AlertState.RESOLVED


class RuleStateManager:
    """
    Owns one RuleState per rule and decides state transitions.

    State transitions (each one produces exactly one NotificationEvent):
    - RESOLVED → PENDING: first failing period(s) observed
    - PENDING/RESOLVED → FIRING: failing periods reached M of N
    - FIRING → PENDING/RESOLVED: window cleared (auto-mitigate only)
    - FIRING → RESOLVED: operator clear (manual mitigation)

    Repeated evaluations that keep the same state never produce an event.
    INDETERMINATE outcomes are stored as gaps in the history and never
    cause a transition on their own.
    """

    def __init__(self, clock: Callable[[], datetime] = now_utc):
        self.states: dict[str, RuleState] = {}
        self.clock = clock
        self.logger = logging.getLogger(__class__.__name__)

    def get(self, rule_name: str) -> RuleState | None:
        return self.states.get(rule_name)

    def get_state(self, rule_name: str) -> AlertState:
        record = self.states.get(rule_name)
        return record.state if record else AlertState.RESOLVED

    def apply(self, rule: AlertRule, evaluation: EvaluationResult) -> NotificationEvent | None:
        """
        Push one evaluation outcome into the rule's history and compute its new state.

        Returns:
            NotificationEvent when the state changed, otherwise None
        """
        record = self._get_or_create(rule)
        record.resize(rule.periods)
        record.push(evaluation.outcome)
        record.last_evaluated_at = evaluation.timestamp

        if evaluation.is_indeterminate:
            self.logger.debug(f"[STATE] {rule.name}: Indeterminate outcome recorded as gap ({record})")
            return None

        record.last_value = evaluation.value

        new_state = compute_next_state(
            history=record.history,
            min_failing=rule.min_failing,
            periods=rule.periods,
            auto_mitigate=rule.auto_mitigate,
            current_state=record.state,
        )

        if new_state == record.state:
            return None

        return self._transition(rule, record, new_state, evaluation.timestamp)

    def clear(self, rule: AlertRule) -> NotificationEvent | None:
        """
        Operator action: reset a rule to RESOLVED and forget its history.

        Returns:
            The RESOLVED NotificationEvent, or None when already RESOLVED
        """
        record = self.states.get(rule.name)
        if record is None or record.state == AlertState.RESOLVED:
            return None

        record.history.clear()
        event = self._transition(rule, record, AlertState.RESOLVED, self.clock(), reason="cleared by operator")
        return event

    def mark_notified(self, rule_name: str, state: AlertState) -> None:
        record = self.states.get(rule_name)
        if record is not None:
            record.last_notified_state = state

    def unnotified_events(self, rules: Mapping[str, AlertRule]) -> list[NotificationEvent]:
        """
        Rebuild events for transitions that were never marked notified
        (e.g. process stopped between transition and dispatch).
        """
        events: list[NotificationEvent] = []
        for name, record in self.states.items():
            rule = rules.get(name)
            if rule is None or record.sequence == 0:
                continue
            if record.last_notified_state == record.state:
                continue
            previous = record.last_notified_state or AlertState.RESOLVED
            events.append(
                self._build_event(
                    rule, record, previous, record.state, record.last_transition_at or self.clock()
                )
            )
        return events

    def discard(self, rule_name: str) -> None:
        if self.states.pop(rule_name, None) is not None:
            self.logger.info(f"[STATE] {rule_name}: Discarded")

    def get_all_firing(self) -> list[RuleState]:
        return [record for record in self.states.values() if record.state == AlertState.FIRING]

    def clear_all(self) -> None:
        """Clear all states (for testing or reset)"""
        self.states.clear()
        self.logger.info("[STATE] All states cleared")

    # ------------------------------------------------------------------
    # Checkpoint support
    # ------------------------------------------------------------------

    def export_snapshots(self) -> list[RuleStateSnapshot]:
        return [record.to_snapshot() for record in self.states.values()]

    def restore_snapshots(
        self, snapshots: Iterable[RuleStateSnapshot], known_rules: Mapping[str, AlertRule] | None = None
    ) -> int:
        """
        Load states from a checkpoint.
        Snapshots for rules absent from `known_rules` are ignored.

        Returns:
            Number of restored states
        """
        restored = 0
        for snapshot in snapshots:
            rule = None
            if known_rules is not None:
                rule = known_rules.get(snapshot.rule_name)
                if rule is None:
                    self.logger.info(f"[STATE] {snapshot.rule_name}: Not in registry, checkpoint entry ignored")
                    continue

            record = RuleState.from_snapshot(snapshot)
            if rule is not None:
                record.resize(rule.periods)
            self.states[snapshot.rule_name] = record
            restored += 1

        self.logger.info(f"[STATE] Restored {restored} rule state(s)")
        return restored

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get_or_create(self, rule: AlertRule) -> RuleState:
        record = self.states.get(rule.name)
        if record is None:
            record = RuleState(rule_name=rule.name, periods=rule.periods)
            self.states[rule.name] = record
        return record

    def _transition(
        self,
        rule: AlertRule,
        record: RuleState,
        new_state: AlertState,
        timestamp: datetime,
        reason: str | None = None,
    ) -> NotificationEvent:
        old_state = record.state
        record.state = new_state
        record.last_transition_at = timestamp
        record.sequence += 1

        self.logger.info(
            f"[STATE] {rule.name}: {old_state} → {new_state} "
            f"(met={record.met_count}/{record.periods}, seq={record.sequence})"
        )
        return self._build_event(rule, record, old_state, new_state, timestamp, reason)

    def _build_event(
        self,
        rule: AlertRule,
        record: RuleState,
        old_state: AlertState,
        new_state: AlertState,
        timestamp: datetime,
        reason: str | None = None,
    ) -> NotificationEvent:
        return NotificationEvent(
            rule_name=rule.name,
            previous_state=old_state,
            new_state=new_state,
            severity=rule.severity,
            timestamp=timestamp,
            description=_build_description(rule, record, new_state, reason),
            sequence=max(record.sequence, 1),
            value=record.last_value,
            met_count=record.met_count,
            periods=record.periods,
        )


def _build_description(rule: AlertRule, record: RuleState, new_state: AlertState, reason: str | None) -> str:
    criteria = rule.criteria
    if isinstance(criteria, StaticThresholdCriteria):
        condition = f"{criteria.aggregation.value}({criteria.metric}) {criteria.operator.value} {criteria.threshold}"
    else:
        condition = f"query[{criteria.mode.value}] {criteria.operator.value} {criteria.threshold}"

    value = f"{record.last_value:.2f}" if record.last_value is not None else "n/a"
    periods = f"{record.met_count}/{record.periods} failing periods (alert at {rule.min_failing})"

    match new_state:
        case AlertState.FIRING:
            msg = f"[{rule.severity.value}] {rule.name}: {condition} violated, value={value}, {periods}"
        case AlertState.PENDING:
            msg = f"[PENDING] {rule.name}: {condition} violated, value={value}, {periods}"
        case _:
            msg = f"[RESOLVED] {rule.name}: {condition} returned to normal, value={value}"

    if reason:
        msg = f"{msg} ({reason})"
    return msg
