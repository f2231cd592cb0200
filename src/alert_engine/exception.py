"""Alert Evaluation Engine Exception Definitions"""


class AlertEngineError(Exception):
    """Base exception for the alert engine"""

    pass


class InvalidRuleError(AlertEngineError):
    """Rule definition rejected by the registry"""

    def __init__(self, rule_name: str | None, violations: list[str]):
        self.rule_name = rule_name
        self.violations = list(violations)
        joined = "; ".join(self.violations) or "unknown violation"
        super().__init__(f"Invalid rule '{rule_name}': {joined}")


class RuleNotFoundError(AlertEngineError):
    """Rule not present in the registry"""

    def __init__(self, rule_name: str):
        super().__init__(f"Rule not found: {rule_name}")
        self.rule_name = rule_name


class TelemetryQueryError(AlertEngineError):
    """Telemetry query failed or timed out (transient)"""

    def __init__(self, message: str, rule_name: str | None = None):
        super().__init__(message)
        self.rule_name = rule_name


class ChannelError(AlertEngineError):
    """Base class for notification channel exceptions"""

    def __init__(self, message: str, channel_id: str | None = None):
        super().__init__(message)
        self.channel_id = channel_id


class DispatchError(ChannelError):
    """Delivery to a single channel failed"""

    pass


class ConfigurationDriftError(ChannelError):
    """Rule references a channel that is not registered"""

    pass
