from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from alert_engine.model.enum.alert_enum import EvaluationOutcome
from alert_engine.schema.alert_rule_schema import AlertRule
from alert_engine.schema.telemetry_schema import EvaluationResult
from alert_engine.telemetry.base import TelemetryClient
from alert_engine.util.notifier.base import BaseNotifier

FIXED_NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def rule_dict():
    """Static threshold rule: average(cpu) > 80, alert at 2 of 3 periods"""
    return {
        "name": "cpu_high",
        "description": "CPU above 80%",
        "severity": "WARNING",
        "frequency": "1m",
        "window_size": "5m",
        "criteria": {
            "kind": "static_threshold",
            "metric": "host.cpu",
            "aggregation": "average",
            "operator": "gt",
            "threshold": 80,
        },
        "failing_periods": {"number_of_evaluation_periods": 3, "min_failing_periods_to_alert": 2},
        "auto_mitigate": True,
        "channels": ["ops_webhook"],
    }


@pytest.fixture
def make_rule(rule_dict):
    """Build an AlertRule from the default rule with top-level overrides"""

    def _make(**overrides) -> AlertRule:
        data = {**rule_dict, **overrides}
        return AlertRule.model_validate(data)

    return _make


@pytest.fixture
def make_evaluation():
    def _make(rule_name: str, outcome: EvaluationOutcome, value: float | None = None) -> EvaluationResult:
        return EvaluationResult(
            rule_name=rule_name,
            timestamp=FIXED_NOW,
            window_start=FIXED_NOW - timedelta(minutes=5),
            window_end=FIXED_NOW,
            outcome=outcome,
            value=value,
            error="query failed" if outcome == EvaluationOutcome.INDETERMINATE else None,
        )

    return _make


@pytest.fixture
def mock_telemetry_client():
    client = AsyncMock(spec=TelemetryClient)
    return client


def make_notifier(channel_id: str, enabled: bool = True, result: bool | Exception = True) -> Mock:
    notifier = Mock(spec=BaseNotifier)
    notifier.channel_id = channel_id
    notifier.enabled = enabled
    notifier.notifier_type = "MockNotifier"
    if isinstance(result, Exception):
        notifier.send = AsyncMock(side_effect=result)
    else:
        notifier.send = AsyncMock(return_value=result)
    return notifier


@pytest.fixture
def notifier_factory():
    return make_notifier
