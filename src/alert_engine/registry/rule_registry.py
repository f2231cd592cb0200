import logging
from collections.abc import Callable, Mapping
from itertools import count
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from alert_engine.evaluator.failing_period_state_machine import RuleStateManager
from alert_engine.exception import InvalidRuleError
from alert_engine.schema.alert_rule_schema import AlertRule

logger = logging.getLogger("RuleRegistry")


class RuleRegistry:
    """
    Holds validated alert rules.

    Every mutation publishes a new immutable mapping, so a snapshot taken by
    the scheduler is never affected by later upsert/remove calls.

    Each add of a previously unknown name gets a fresh incarnation number, so
    holders of an old rule object can tell a re-added rule from a replaced one.
    """

    def __init__(self, state_manager: RuleStateManager | None = None):
        self._rules: Mapping[str, AlertRule] = MappingProxyType({})
        self.state_manager = state_manager
        self._incarnations: dict[str, int] = {}
        self._incarnation_counter = count(1)
        self._remove_listeners: list[Callable[[str], None]] = []

    def add_remove_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with the rule name on every remove"""
        self._remove_listeners.append(listener)

    def upsert(self, rule: AlertRule | Mapping[str, Any]) -> AlertRule:
        """
        Validate and add (or atomically replace) a rule.

        Raises:
            InvalidRuleError: listing every violated constraint
        """
        validated = self._validate(rule)

        previous = self._rules.get(validated.name)
        updated = dict(self._rules)
        updated[validated.name] = validated
        self._rules = MappingProxyType(updated)

        if previous is None:
            self._incarnations[validated.name] = next(self._incarnation_counter)
            logger.info(f"[REGISTRY] Added rule '{validated.name}' ({validated.criteria.kind})")
        else:
            logger.info(f"[REGISTRY] Replaced rule '{validated.name}'")
            if self.state_manager is not None and previous.periods != validated.periods:
                record = self.state_manager.get(validated.name)
                if record is not None:
                    record.resize(validated.periods)

        if validated.window_size < validated.frequency:
            logger.warning(
                f"[REGISTRY] Rule '{validated.name}': window_size {validated.window_size} is shorter than "
                f"frequency {validated.frequency}, telemetry between windows is never evaluated"
            )

        return validated

    def remove(self, name: str) -> bool:
        """
        Delete a rule and its state. Idempotent.

        Returns:
            True if a rule was removed
        """
        removed = name in self._rules
        if removed:
            updated = dict(self._rules)
            del updated[name]
            self._rules = MappingProxyType(updated)
            self._incarnations.pop(name, None)
            logger.info(f"[REGISTRY] Removed rule '{name}'")

        if self.state_manager is not None:
            self.state_manager.discard(name)

        for listener in self._remove_listeners:
            listener(name)

        return removed

    def snapshot(self) -> Mapping[str, AlertRule]:
        """Point-in-time, read-only view of all rules"""
        return self._rules

    def get(self, name: str) -> AlertRule | None:
        return self._rules.get(name)

    def incarnation(self, name: str) -> int | None:
        return self._incarnations.get(name)

    def names(self) -> list[str]:
        return list(self._rules.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __len__(self) -> int:
        return len(self._rules)

    @staticmethod
    def _validate(rule: AlertRule | Mapping[str, Any]) -> AlertRule:
        if isinstance(rule, AlertRule):
            raw = rule.model_dump()
            name = rule.name
        else:
            raw = dict(rule)
            name = raw.get("name")

        try:
            return AlertRule.model_validate(raw)
        except ValidationError as e:
            violations = [v for err in e.errors() for v in _format_error(err)]
            logger.warning(f"[REGISTRY] Rejected rule '{name}': {violations}")
            raise InvalidRuleError(name, violations) from e


def _format_error(err: dict) -> list[str]:
    loc = ".".join(str(part) for part in err.get("loc", ()))
    msg = err.get("msg", "invalid")
    # model_validator errors carry "Value error, a; b" with an empty loc
    msg = msg.removeprefix("Value error, ")
    if not loc:
        return msg.split("; ")
    return [f"{loc}: {msg}"]
