import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from alert_engine.evaluator.failing_period_state_machine import RuleStateManager
from alert_engine.model.enum.alert_enum import EvaluationOutcome
from alert_engine.repository.rule_state_repository import RuleStateRepository
from alert_engine.task.checkpoint_task import RuleStateCheckpointTask


class TestRuleStateCheckpointTask:

    @pytest.mark.asyncio
    async def test_when_run_once_then_all_states_saved(self, make_rule, make_evaluation):
        # Arrange
        state_manager = RuleStateManager()
        rule = make_rule()
        state_manager.apply(rule, make_evaluation(rule.name, EvaluationOutcome.MET, 90.0))
        repository = Mock(spec=RuleStateRepository)
        repository.save = AsyncMock()
        task = RuleStateCheckpointTask(state_manager, repository, interval_sec=60)

        # Act
        await task.run_once()

        # Assert
        snapshots = repository.save.await_args.args[0]
        assert [s.rule_name for s in snapshots] == ["cpu_high"]
        assert snapshots[0].history == [EvaluationOutcome.MET]
        assert task.saves == 1

    @pytest.mark.asyncio
    async def test_when_stopped_then_final_checkpoint_written(self, tmp_path, make_rule, make_evaluation):
        # Arrange
        state_manager = RuleStateManager()
        repository = RuleStateRepository(str(tmp_path))
        task = RuleStateCheckpointTask(state_manager, repository, interval_sec=60)
        task.start()
        rule = make_rule()
        state_manager.apply(rule, make_evaluation(rule.name, EvaluationOutcome.NOT_MET, 10.0))

        # Act
        await asyncio.sleep(0)
        await task.stop()

        # Assert
        assert task.is_running is False
        loaded = await repository.load()
        assert [s.rule_name for s in loaded] == ["cpu_high"]

    @pytest.mark.asyncio
    async def test_when_save_fails_then_loop_keeps_running(self, make_rule):
        # Arrange
        repository = Mock(spec=RuleStateRepository)
        calls = []

        async def save(snapshots):
            calls.append(snapshots)
            if len(calls) == 1:
                raise OSError("disk full")

        repository.save = AsyncMock(side_effect=save)
        task = RuleStateCheckpointTask(RuleStateManager(), repository, interval_sec=0.01)

        # Act
        task.start()
        await asyncio.sleep(0.05)
        running = task.is_running
        await task.stop()

        # Assert
        assert running is True
        assert repository.save.await_count >= 2
