from enum import StrEnum


class AlertSeverity(StrEnum):
    INFORMATIONAL = "INFORMATIONAL"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        """Ordering key: CRITICAL > ERROR > WARNING > INFORMATIONAL"""
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if isinstance(other, AlertSeverity):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, AlertSeverity):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, AlertSeverity):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, AlertSeverity):
            return self.rank >= other.rank
        return NotImplemented


_SEVERITY_RANK: dict[AlertSeverity, int] = {
    AlertSeverity.INFORMATIONAL: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.ERROR: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertState(StrEnum):
    """
    Rule lifecycle states:
    RESOLVED: No alert active (initial state)
    PENDING: Some failing periods in the window, fewer than required
    FIRING: Failing periods in the window reached the alert threshold
    """

    RESOLVED = "RESOLVED"
    PENDING = "PENDING"
    FIRING = "FIRING"


class EvaluationOutcome(StrEnum):
    MET = "MET"
    NOT_MET = "NOT_MET"
    INDETERMINATE = "INDETERMINATE"
