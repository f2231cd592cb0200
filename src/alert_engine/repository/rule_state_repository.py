import json
import logging
import os

import aiofiles
from pydantic import ValidationError

from alert_engine.schema.rule_state_schema import RuleStateCheckpoint, RuleStateSnapshot
from alert_engine.util.time_util import now_utc

logger = logging.getLogger("RuleStateRepository")


class RuleStateRepository:
    """
    JSON checkpoint of rule states on local disk.

    Writes go to a temp file first and are swapped in with os.replace,
    so a crash mid-write never leaves a truncated checkpoint behind.
    """

    def __init__(self, dirpath: str, filename: str = "rule_state.json"):
        self.dir = dirpath
        self.path = os.path.join(dirpath, filename)
        os.makedirs(self.dir, exist_ok=True)

    async def save(self, snapshots: list[RuleStateSnapshot]) -> str:
        checkpoint = RuleStateCheckpoint(saved_at=now_utc(), states=list(snapshots))
        tmp_path = f"{self.path}.tmp"

        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(checkpoint.model_dump_json(indent=2))
        os.replace(tmp_path, self.path)

        logger.debug(f"[CHECKPOINT] Saved {len(checkpoint.states)} rule state(s) to {self.path}")
        return self.path

    async def load(self) -> list[RuleStateSnapshot]:
        """
        Returns:
            Snapshots from the last checkpoint; empty if none exists or it is unreadable
        """
        if not os.path.exists(self.path):
            logger.info(f"[CHECKPOINT] No checkpoint at {self.path}, starting fresh")
            return []

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
            checkpoint = RuleStateCheckpoint.model_validate(json.loads(raw))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"[CHECKPOINT] Unreadable checkpoint {self.path}, starting fresh: {e}")
            return []

        logger.info(f"[CHECKPOINT] Loaded {len(checkpoint.states)} rule state(s) saved at {checkpoint.saved_at}")
        return checkpoint.states

    def delete(self) -> bool:
        try:
            os.remove(self.path)
            return True
        except FileNotFoundError:
            return False
