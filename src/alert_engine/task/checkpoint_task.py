import logging

from alert_engine.evaluator.failing_period_state_machine import RuleStateManager
from alert_engine.repository.rule_state_repository import RuleStateRepository
from alert_engine.task.async_job_base import AsyncRecurringJob

logger = logging.getLogger(__name__)


class RuleStateCheckpointTask(AsyncRecurringJob):
    """
    Periodically persists every rule's failing-period history and alert state,
    and once more on shutdown.
    """

    def __init__(self, state_manager: RuleStateManager, repository: RuleStateRepository, interval_sec: float = 30.0):
        self.state_manager = state_manager
        self.repository = repository
        self.saves: int = 0
        super().__init__(interval_seconds=interval_sec)

    async def run_once(self) -> None:
        snapshots = self.state_manager.export_snapshots()
        await self.repository.save(snapshots)
        self.saves += 1
        logger.debug(f"[Checkpoint] Persisted {len(snapshots)} rule state(s)")

    async def on_stop(self) -> None:
        await self.run_once()
        logger.info("[Checkpoint] Final checkpoint written")
