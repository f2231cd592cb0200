from collections import deque
from datetime import datetime

from alert_engine.model.enum.alert_enum import AlertState, EvaluationOutcome
from alert_engine.schema.rule_state_schema import RuleStateSnapshot


class RuleState:
    """Mutable per-rule evaluation state"""

    def __init__(
        self,
        rule_name: str,
        periods: int,
        state: AlertState = AlertState.RESOLVED,
        history: list[EvaluationOutcome] | None = None,
        last_transition_at: datetime | None = None,
        last_notified_state: AlertState | None = None,
        sequence: int = 0,
        last_evaluated_at: datetime | None = None,
        last_value: float | None = None,
    ):
        self.rule_name = rule_name
        self.history: deque[EvaluationOutcome] = deque(history or [], maxlen=periods)
        self.state = state
        self.last_transition_at = last_transition_at
        self.last_notified_state = last_notified_state
        self.sequence = sequence
        self.last_evaluated_at = last_evaluated_at
        self.last_value = last_value

    @property
    def periods(self) -> int:
        return self.history.maxlen

    @property
    def met_count(self) -> int:
        return sum(1 for outcome in self.history if outcome == EvaluationOutcome.MET)

    def push(self, outcome: EvaluationOutcome) -> None:
        """Append an outcome, evicting the oldest when full"""
        self.history.append(outcome)

    def resize(self, periods: int) -> None:
        """Change history length, keeping the most recent entries"""
        if periods == self.history.maxlen:
            return
        self.history = deque(self.history, maxlen=periods)

    def to_snapshot(self) -> RuleStateSnapshot:
        return RuleStateSnapshot(
            rule_name=self.rule_name,
            periods=self.periods,
            history=list(self.history),
            state=self.state,
            last_transition_at=self.last_transition_at,
            last_notified_state=self.last_notified_state,
            sequence=self.sequence,
            last_evaluated_at=self.last_evaluated_at,
            last_value=self.last_value,
        )

    @classmethod
    def from_snapshot(cls, snapshot: RuleStateSnapshot) -> "RuleState":
        return cls(
            rule_name=snapshot.rule_name,
            periods=snapshot.periods,
            state=snapshot.state,
            history=list(snapshot.history),
            last_transition_at=snapshot.last_transition_at,
            last_notified_state=snapshot.last_notified_state,
            sequence=snapshot.sequence,
            last_evaluated_at=snapshot.last_evaluated_at,
            last_value=snapshot.last_value,
        )

    def __repr__(self) -> str:
        return (
            f"RuleState(rule={self.rule_name}, state={self.state}, "
            f"met={self.met_count}/{self.periods}, history={[o.value for o in self.history]})"
        )
