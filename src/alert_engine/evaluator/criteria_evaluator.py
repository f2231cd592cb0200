import logging
from datetime import datetime
from typing import Callable

from alert_engine.model.enum.alert_enum import EvaluationOutcome
from alert_engine.model.enum.condition_enum import (
    AggregationScope,
    AggregationType,
    ConditionOperator,
    CriteriaKind,
    QueryThresholdMode,
)
from alert_engine.schema.alert_rule_schema import AlertRule, QueryThresholdCriteria, StaticThresholdCriteria
from alert_engine.schema.telemetry_schema import AggregateResult, EvaluationResult, QueryDescriptor
from alert_engine.util.time_util import now_utc

logger = logging.getLogger("CriteriaEvaluator")

# (outcome, computed value)
Score = tuple[EvaluationOutcome, float | None]


def compare(value: float, operator: ConditionOperator, threshold: float) -> bool:
    match operator:
        case ConditionOperator.GREATER_THAN:
            return value > threshold
        case ConditionOperator.GREATER_THAN_OR_EQUAL:
            return value >= threshold
        case ConditionOperator.LESS_THAN:
            return value < threshold
        case ConditionOperator.LESS_THAN_OR_EQUAL:
            return value <= threshold
        case ConditionOperator.EQUAL:
            return value == threshold
        case ConditionOperator.NOT_EQUAL:
            return value != threshold
        case _:
            raise ValueError(f"Unknown operator: {operator}")


def aggregate(values: list[float], aggregation: AggregationType) -> float | None:
    """
    Reduce a window's series to one number.
    Empty series: sum/total/count are 0, average/min/max have no value.
    """
    match aggregation:
        case AggregationType.SUM | AggregationType.TOTAL:
            return float(sum(values))
        case AggregationType.COUNT:
            return float(len(values))
        case AggregationType.AVERAGE:
            return sum(values) / len(values) if values else None
        case AggregationType.MIN:
            return min(values) if values else None
        case AggregationType.MAX:
            return max(values) if values else None
        case _:
            raise ValueError(f"Unknown aggregation: {aggregation}")


def _score_static_threshold(criteria: StaticThresholdCriteria, result: AggregateResult) -> Score:
    series = list(result.series)
    if not series and result.value is not None:
        series = [result.value]

    if criteria.scope == AggregationScope.PER_BUCKET:
        # Each entry is already one bucket's aggregate; any violating bucket counts
        violating = [v for v in series if compare(v, criteria.operator, criteria.threshold)]
        if violating:
            worst = max(violating) if criteria.operator in _UPPER_BOUND_OPERATORS else min(violating)
            return EvaluationOutcome.MET, worst
        return EvaluationOutcome.NOT_MET, aggregate(series, criteria.aggregation)

    value = aggregate(series, criteria.aggregation)
    if value is None:
        return EvaluationOutcome.NOT_MET, None

    met = compare(value, criteria.operator, criteria.threshold)
    return (EvaluationOutcome.MET if met else EvaluationOutcome.NOT_MET), value


def _score_query_threshold(criteria: QueryThresholdCriteria, result: AggregateResult) -> Score:
    if criteria.mode == QueryThresholdMode.BUCKET_COUNT:
        bucket_count = result.bucket_count
        if bucket_count is None:
            # Backends that only return per-bucket rows: every returned row qualifies
            bucket_count = len(result.series)
        met = bucket_count > 0
        return (EvaluationOutcome.MET if met else EvaluationOutcome.NOT_MET), float(bucket_count)

    value = result.value
    if value is None and result.bucket_count is not None:
        value = float(result.bucket_count)
    if value is None:
        return EvaluationOutcome.NOT_MET, None

    met = compare(value, criteria.operator, criteria.threshold)
    return (EvaluationOutcome.MET if met else EvaluationOutcome.NOT_MET), value


_UPPER_BOUND_OPERATORS = {
    ConditionOperator.GREATER_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.EQUAL,
    ConditionOperator.NOT_EQUAL,
}

_STRATEGIES: dict[str, Callable[..., Score]] = {
    CriteriaKind.STATIC_THRESHOLD.value: _score_static_threshold,
    CriteriaKind.QUERY_THRESHOLD.value: _score_query_threshold,
}


class CriteriaEvaluator:
    """Single entry point applying a rule's criteria to a telemetry result"""

    def __init__(self, clock: Callable[[], datetime] = now_utc):
        self.clock = clock

    def evaluate(
        self,
        rule: AlertRule,
        result: AggregateResult | None,
        window_start: datetime,
        window_end: datetime,
        error: str | None = None,
    ) -> EvaluationResult:
        """
        Score one tick.

        Args:
            rule: Rule being evaluated
            result: Telemetry answer, or None when the query failed
            window_start / window_end: Queried window
            error: Failure text when `result` is None

        Returns:
            EvaluationResult with MET / NOT_MET / INDETERMINATE outcome
        """
        if result is None:
            return self.indeterminate(rule, window_start, window_end, error or "no telemetry result")

        strategy = _STRATEGIES.get(rule.criteria.kind)
        if strategy is None:
            return self.indeterminate(rule, window_start, window_end, f"unknown criteria kind {rule.criteria.kind}")

        try:
            outcome, value = strategy(rule.criteria, result)
        except Exception as e:
            logger.error(f"[{rule.name}] Error scoring {rule.criteria.kind}: {e}")
            return self.indeterminate(rule, window_start, window_end, str(e))

        logger.debug(f"[{rule.name}] outcome={outcome} value={value}")
        return EvaluationResult(
            rule_name=rule.name,
            timestamp=self.clock(),
            window_start=window_start,
            window_end=window_end,
            outcome=outcome,
            value=value,
        )

    def indeterminate(
        self, rule: AlertRule, window_start: datetime, window_end: datetime, error: str
    ) -> EvaluationResult:
        return EvaluationResult(
            rule_name=rule.name,
            timestamp=self.clock(),
            window_start=window_start,
            window_end=window_end,
            outcome=EvaluationOutcome.INDETERMINATE,
            error=error,
        )


def build_query_descriptor(rule: AlertRule) -> QueryDescriptor:
    criteria = rule.criteria
    if isinstance(criteria, StaticThresholdCriteria):
        return QueryDescriptor(
            rule_name=rule.name,
            kind=CriteriaKind.STATIC_THRESHOLD,
            metric=criteria.metric,
            aggregation=criteria.aggregation,
            scope=criteria.scope,
            operator=criteria.operator,
            threshold=criteria.threshold,
        )

    return QueryDescriptor(
        rule_name=rule.name,
        kind=CriteriaKind.QUERY_THRESHOLD,
        query=criteria.query,
        mode=criteria.mode,
        operator=criteria.operator,
        threshold=criteria.threshold,
    )
