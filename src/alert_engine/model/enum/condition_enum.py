from enum import StrEnum


class CriteriaKind(StrEnum):
    STATIC_THRESHOLD = "static_threshold"
    QUERY_THRESHOLD = "query_threshold"


class ConditionOperator(StrEnum):
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    EQUAL = "eq"
    NOT_EQUAL = "neq"


class AggregationType(StrEnum):
    SUM = "sum"
    TOTAL = "total"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    COUNT = "count"


class AggregationScope(StrEnum):
    """How a static threshold treats the window's series"""

    WINDOW = "window"
    PER_BUCKET = "per_bucket"


class QueryThresholdMode(StrEnum):
    BUCKET_COUNT = "bucket_count"
    AGGREGATE = "aggregate"
