import math
from datetime import timedelta
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from alert_engine.model.enum.alert_enum import AlertSeverity
from alert_engine.model.enum.condition_enum import (
    AggregationScope,
    AggregationType,
    ConditionOperator,
    QueryThresholdMode,
)
from alert_engine.util.time_util import parse_duration

# ============================================================
# Criteria (tagged variant, discriminated by `kind`)
# ============================================================


class StaticThresholdCriteria(BaseModel):
    """
    Metric threshold evaluated over the window's raw series.
    Example:
        kind: "static_threshold"
        metric: "http.server.errors"
        aggregation: "total"
        operator: "gt"
        threshold: 10
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["static_threshold"] = "static_threshold"
    metric: str = Field(min_length=1)
    operator: ConditionOperator
    threshold: float
    aggregation: AggregationType = AggregationType.AVERAGE
    scope: AggregationScope = AggregationScope.WINDOW


class QueryThresholdCriteria(BaseModel):
    """
    Log/query based threshold. The telemetry backend runs `query` and returns
    how many buckets satisfied its embedded predicate.
    Example:
        kind: "query_threshold"
        query: "requests | where resultCode >= 500 | summarize count() by bin(timestamp, 1m)"
        operator: "gt"
        threshold: 5
        mode: "bucket_count"
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["query_threshold"] = "query_threshold"
    query: str = Field(min_length=1)
    operator: ConditionOperator = ConditionOperator.GREATER_THAN
    threshold: float = 0.0
    mode: QueryThresholdMode = QueryThresholdMode.BUCKET_COUNT


Criteria = Annotated[StaticThresholdCriteria | QueryThresholdCriteria, Field(discriminator="kind")]


# ============================================================
# Failing period policy
# ============================================================


class FailingPeriodPolicy(BaseModel):
    """M-of-N failing period confirmation"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    number_of_evaluation_periods: int = Field(default=1, ge=1, description="History length N")
    min_failing_periods_to_alert: int = Field(default=1, ge=1, description="Met outcomes M required to fire")


# ============================================================
# Alert rule
# ============================================================


class AlertRule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    description: str | None = None
    severity: AlertSeverity = AlertSeverity.WARNING
    frequency: timedelta
    window_size: timedelta
    criteria: Criteria
    failing_periods: FailingPeriodPolicy = Field(default_factory=FailingPeriodPolicy)
    auto_mitigate: bool = True
    enabled: bool = True
    channels: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("frequency", "window_size", mode="before")
    @classmethod
    def parse_durations(cls, v):
        return parse_duration(v)

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode="after")
    def validate_invariants(self):
        violations = collect_rule_violations(self)
        if violations:
            raise ValueError("; ".join(violations))
        return self

    @property
    def periods(self) -> int:
        return self.failing_periods.number_of_evaluation_periods

    @property
    def min_failing(self) -> int:
        return self.failing_periods.min_failing_periods_to_alert


def collect_rule_violations(rule: AlertRule) -> list[str]:
    """
    Check cross-field invariants of a rule.

    Returns:
        Human-readable list of violated constraints (empty when valid)
    """
    violations: list[str] = []

    if rule.frequency.total_seconds() <= 0:
        violations.append(f"frequency must be > 0 (got {rule.frequency})")

    if rule.window_size.total_seconds() <= 0:
        violations.append(f"window_size must be > 0 (got {rule.window_size})")

    if not math.isfinite(rule.criteria.threshold):
        violations.append(f"threshold must be a finite number (got {rule.criteria.threshold})")

    n = rule.failing_periods.number_of_evaluation_periods
    m = rule.failing_periods.min_failing_periods_to_alert
    if m > n:
        violations.append(
            f"min_failing_periods_to_alert ({m}) cannot exceed number_of_evaluation_periods ({n})"
        )

    return violations
