"""Periodic eviction of expired sessions and finished tasks."""

import asyncio
import logging
from typing import Awaitable, Callable

from taleweaver.store.sessions import SessionStore
from taleweaver.store.tasks import TaskLedger

logger = logging.getLogger(__name__)


class Housekeeper:
    """Sweeps both stores on a fixed interval until cancelled."""

    def __init__(
        self,
        sessions: SessionStore,
        tasks: TaskLedger,
        interval_seconds: float = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sessions = sessions
        self.tasks = tasks
        self.interval = interval_seconds
        self._sleep = sleep

    def sweep_once(self) -> dict[str, int]:
        return {
            "sessions": self.sessions.sweep_expired(),
            "tasks": self.tasks.sweep_expired(),
        }

    async def run(self) -> None:
        logger.info(f"Housekeeper started (interval={self.interval}s)")
        while True:
            await self._sleep(self.interval)
            try:
                self.sweep_once()
            except Exception as e:
                logger.error(f"Sweep failed: {type(e).__name__}: {e}", exc_info=True)
