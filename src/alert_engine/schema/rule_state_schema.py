from datetime import datetime

from pydantic import BaseModel, Field

from alert_engine.model.enum.alert_enum import AlertState, EvaluationOutcome


class RuleStateSnapshot(BaseModel):
    """Serializable copy of one RuleState"""

    rule_name: str
    periods: int = Field(ge=1)
    history: list[EvaluationOutcome] = Field(default_factory=list)
    state: AlertState = AlertState.RESOLVED
    last_transition_at: datetime | None = None
    last_notified_state: AlertState | None = None
    sequence: int = Field(default=0, ge=0)
    last_evaluated_at: datetime | None = None
    last_value: float | None = None


class RuleStateCheckpoint(BaseModel):
    """Checkpoint file layout"""

    version: str = "1"
    saved_at: datetime
    states: list[RuleStateSnapshot] = Field(default_factory=list)
