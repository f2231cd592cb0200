from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from alert_engine.model.enum.alert_enum import EvaluationOutcome
from alert_engine.model.enum.condition_enum import (
    AggregationScope,
    AggregationType,
    ConditionOperator,
    CriteriaKind,
    QueryThresholdMode,
)


class QueryDescriptor(BaseModel):
    """
    Opaque request handed to the telemetry client.
    Only one of `metric` (static threshold) or `query` (query threshold) is set.
    """

    model_config = ConfigDict(frozen=True)

    rule_name: str
    kind: CriteriaKind
    metric: str | None = None
    query: str | None = None
    aggregation: AggregationType | None = None
    scope: AggregationScope | None = None
    mode: QueryThresholdMode | None = None
    operator: ConditionOperator
    threshold: float


class AggregateResult(BaseModel):
    """
    Telemetry answer for one window.

    series:       raw (or per-bucket) values inside the window
    value:        single aggregate computed by the backend
    bucket_count: number of buckets satisfying the query's embedded predicate
    """

    series: list[float] = Field(default_factory=list)
    value: float | None = None
    bucket_count: int | None = Field(default=None, ge=0)


class EvaluationResult(BaseModel):
    """Outcome of one evaluation tick for one rule"""

    rule_name: str
    timestamp: datetime
    window_start: datetime
    window_end: datetime
    outcome: EvaluationOutcome
    value: float | None = None
    error: str | None = None

    @property
    def is_met(self) -> bool:
        return self.outcome == EvaluationOutcome.MET

    @property
    def is_indeterminate(self) -> bool:
        return self.outcome == EvaluationOutcome.INDETERMINATE
