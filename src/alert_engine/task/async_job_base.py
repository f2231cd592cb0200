import asyncio
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class AsyncRecurringJob(ABC):
    """
    Base class for recurring background jobs.

    Subclasses implement `run_once()`; the loop, error logging and
    cancellation live here.
    """

    def __init__(self, interval_seconds: float):
        self._interval = float(interval_seconds)
        self._task: asyncio.Task | None = None
        self._stopping: bool = False

    @abstractmethod
    async def run_once(self) -> None: ...

    async def on_stop(self) -> None:
        """Hook executed once after the loop ends (e.g. a final flush)"""
        return None

    async def _loop(self) -> None:
        name = self.__class__.__name__
        logger.info(f"[{name}] loop started (interval={self._interval}s)")

        while not self._stopping:
            if self._interval > 0:
                try:
                    await asyncio.sleep(self._interval)
                except asyncio.CancelledError:
                    break
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info(f"[{name}] task cancelled")
                break
            except Exception as e:
                logger.exception(f"[{name}] exception in run_once: {e}")

        logger.info(f"[{name}] loop stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task and not self._task.done():
            logger.warning(f"[{self.__class__.__name__}] already running")
            return self._task

        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name=self.__class__.__name__)
        return self._task

    async def stop(self) -> None:
        """Stop the loop, then run `on_stop`. Safe to call when not running."""
        self._stopping = True

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            finally:
                self._task = None

        try:
            await self.on_stop()
        except Exception as e:
            logger.exception(f"[{self.__class__.__name__}] exception in on_stop: {e}")
