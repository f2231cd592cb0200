import pytest

from alert_engine.exception import InvalidRuleError
from alert_engine.registry.rule_registry import RuleRegistry
from alert_engine.util.factory.rule_factory import load_rules_from_yaml

VALID_RULE = """
  - name: "cpu_high"
    frequency: "1m"
    window_size: "5m"
    criteria:
      kind: "static_threshold"
      metric: "host.cpu"
      aggregation: "average"
      operator: "gt"
      threshold: ${CPU_THRESHOLD:-80}
    failing_periods:
      number_of_evaluation_periods: 3
      min_failing_periods_to_alert: 2
    channels: ["ops_webhook"]
"""

INVALID_RULE = """
  - name: "broken"
    frequency: "1m"
    window_size: "5m"
    criteria:
      kind: "static_threshold"
      metric: "host.cpu"
      aggregation: "average"
      operator: "gt"
      threshold: 80
    failing_periods:
      number_of_evaluation_periods: 2
      min_failing_periods_to_alert: 3
"""


@pytest.fixture
def write_rules(tmp_path):
    def _write(body: str) -> str:
        path = tmp_path / "alert_rules.yml"
        path.write_text('version: "1.0.0"\nrules:' + body, encoding="utf-8")
        return str(path)

    return _write


class TestLoadRulesFromYaml:

    def test_when_rules_valid_then_registered_with_env_resolved(self, write_rules, monkeypatch):
        # Arrange
        monkeypatch.setenv("CPU_THRESHOLD", "90")
        registry = RuleRegistry()

        # Act
        loaded = load_rules_from_yaml(write_rules(VALID_RULE), registry)

        # Assert
        assert loaded == ["cpu_high"]
        assert registry.get("cpu_high").criteria.threshold == 90

    def test_when_rule_invalid_and_strict_then_raises(self, write_rules):
        registry = RuleRegistry()

        with pytest.raises(InvalidRuleError):
            load_rules_from_yaml(write_rules(VALID_RULE + INVALID_RULE), registry)

    def test_when_rule_invalid_and_not_strict_then_skipped(self, write_rules):
        # Arrange
        registry = RuleRegistry()

        # Act
        loaded = load_rules_from_yaml(write_rules(VALID_RULE + INVALID_RULE), registry, strict=False)

        # Assert
        assert loaded == ["cpu_high"]
        assert registry.get("broken") is None

    def test_when_rules_not_a_list_then_value_error(self, tmp_path):
        path = tmp_path / "alert_rules.yml"
        path.write_text("rules:\n  cpu_high: {}\n", encoding="utf-8")

        with pytest.raises(ValueError):
            load_rules_from_yaml(str(path), RuleRegistry())
