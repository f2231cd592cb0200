import logging

from alert_engine.exception import InvalidRuleError
from alert_engine.registry.rule_registry import RuleRegistry
from alert_engine.util.config_manager import ConfigManager

logger = logging.getLogger("RuleFactory")


def load_rules_from_yaml(path: str, registry: RuleRegistry, strict: bool = True) -> list[str]:
    """
    Upsert every rule of a rule file into the registry.

    File layout:
        version: "1.0.0"
        rules:
          - name: "api_error_rate"
            frequency: "1m"
            window_size: "5m"
            ...

    Args:
        path: Path to rule configuration YAML file
        registry: Registry receiving the rules
        strict: Raise on the first invalid rule instead of skipping it

    Returns:
        Names of the loaded rules
    """
    config_dict = ConfigManager.load_yaml_with_env(path)
    raw_rules = config_dict.get("rules") or []
    if not isinstance(raw_rules, list):
        raise ValueError(f"'rules' must be a list in {path}")

    loaded: list[str] = []
    for raw in raw_rules:
        try:
            rule = registry.upsert(raw)
        except InvalidRuleError as e:
            if strict:
                raise
            logger.error(f"Skipping invalid rule: {e}")
            continue
        loaded.append(rule.name)

    logger.info(f"Loaded {len(loaded)}/{len(raw_rules)} rules from {path} (version={config_dict.get('version', 'n/a')})")
    return loaded
