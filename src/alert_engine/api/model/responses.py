"""
API Response Data Models

Output structures of the status API.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from alert_engine.api.model.enums import ResponseStatus
from alert_engine.model.enum.alert_enum import AlertSeverity, AlertState, EvaluationOutcome
from alert_engine.util.time_util import now_utc


class BaseResponse(BaseModel):
    """Common envelope of every API response"""

    status: ResponseStatus = Field(..., description="Response status")
    timestamp: datetime = Field(default_factory=now_utc, description="Response timestamp")
    message: str | None = Field(None, description="Additional message")


class RuleSummary(BaseModel):
    """
    One registered rule.

    Attributes:
        name: Rule name.
        kind: Criteria kind.
        severity: Rule severity.
        state: Current alert state (RESOLVED before the first evaluation).
    """

    name: str
    kind: str
    severity: AlertSeverity
    enabled: bool
    auto_mitigate: bool
    frequency_sec: float
    window_size_sec: float
    channels: list[str]
    state: AlertState


class RuleListResponse(BaseResponse):
    rules: list[RuleSummary]
    total_count: int
    firing_count: int


class RuleStateResponse(BaseResponse):
    """
    Evaluation state of one rule.

    Attributes:
        evaluated: False until the rule has been evaluated at least once.
        history: Outcomes of the last N periods, oldest first.
        met_count: MET outcomes in the history.
    """

    rule_name: str
    evaluated: bool
    state: AlertState
    history: list[EvaluationOutcome] = Field(default_factory=list)
    met_count: int = 0
    periods: int
    min_failing_periods: int
    sequence: int = 0
    last_transition_at: datetime | None = None
    last_notified_state: AlertState | None = None
    last_evaluated_at: datetime | None = None
    last_value: float | None = None
    in_flight: bool = False


class ClearRuleResponse(BaseResponse):
    rule_name: str
    cleared: bool
    delivered: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)


class EvaluateRuleResponse(BaseResponse):
    rule_name: str
    outcome: EvaluationOutcome | None = None
    value: float | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    error: str | None = None
