"""
Operational counters for the evaluation engine.

Counters are plain in-process integers keyed by name (and optionally by rule
or channel tag); `metrics_report_loop` periodically logs what changed.
"""

import asyncio
import logging
from collections import Counter

logger = logging.getLogger(__name__)

EVALUATIONS = "evaluations"
TICKS_SKIPPED = "ticks_skipped"
INDETERMINATE = "indeterminate"
TELEMETRY_FAILURES = "telemetry_failures"
TRANSITIONS = "transitions"
DISPATCHED = "dispatched"
DISPATCH_FAILURES = "dispatch_failures"
DISPATCH_DUPLICATES = "dispatch_duplicates"
CONFIGURATION_DRIFT = "configuration_drift"

# Counters tagged by rule name; dropped when the rule is removed
RULE_METRICS = (EVALUATIONS, TICKS_SKIPPED, INDETERMINATE, TELEMETRY_FAILURES, TRANSITIONS, DISPATCH_DUPLICATES)


class EngineMetrics:
    def __init__(self) -> None:
        self._counters: Counter[str] = Counter()
        self._tagged: Counter[tuple[str, str]] = Counter()

    def increment(self, name: str, tag: str | None = None, amount: int = 1) -> None:
        self._counters[name] += amount
        if tag is not None:
            self._tagged[(name, tag)] += amount

    def get(self, name: str, tag: str | None = None) -> int:
        if tag is None:
            return int(self._counters.get(name, 0))
        return int(self._tagged.get((name, tag), 0))

    def snapshot(self) -> dict[str, int]:
        return dict(self._counters)

    def tagged_snapshot(self, name: str) -> dict[str, int]:
        return {tag: count for (metric, tag), count in self._tagged.items() if metric == name}

    def drop_tag(self, tag: str, names: tuple[str, ...] = RULE_METRICS) -> None:
        """Forget per-tag counts; totals are kept"""
        for key in [k for k in self._tagged if k[1] == tag and k[0] in names]:
            del self._tagged[key]

    def reset(self) -> None:
        self._counters.clear()
        self._tagged.clear()


async def metrics_report_loop(metrics: EngineMetrics, report_interval_sec: float = 60.0) -> None:
    """
    Log counter deltas once per interval.

    Args:
        metrics: EngineMetrics instance
        report_interval_sec: Seconds between reports
    """
    last_counts: dict[str, int] = {}

    while True:
        try:
            await asyncio.sleep(report_interval_sec)

            current = metrics.snapshot()
            deltas = {name: count - last_counts.get(name, 0) for name, count in current.items()}
            changed = {name: delta for name, delta in deltas.items() if delta}
            last_counts = current

            if not changed:
                continue

            lines = [f"{name}: +{delta} (total={current[name]})" for name, delta in sorted(changed.items())]
            logger.info(f"[Metrics] Last {report_interval_sec:.0f}s: " + ", ".join(lines))

            if changed.get(DISPATCH_FAILURES) or changed.get(CONFIGURATION_DRIFT):
                logger.warning(
                    f"[Metrics] Notification problems: "
                    f"failures_by_channel={metrics.tagged_snapshot(DISPATCH_FAILURES)}, "
                    f"drift_by_channel={metrics.tagged_snapshot(CONFIGURATION_DRIFT)}"
                )

        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(f"[Metrics] Report loop error: {exc}")
