"""In-memory task ledger.

Tasks are short-lived progress records. Reads never extend their lifetime;
a task that reaches a terminal status is stamped with an expiry and removed
by the next sweep after it.
"""

import logging
import time
from typing import Any, Callable, Iterator, Optional

from taleweaver.orchestrator.state import is_terminal
from taleweaver.schemas.task import Task

logger = logging.getLogger(__name__)


class TaskLedger:
    """Keyed store of task records with terminal-state TTL.

    Every mutation replaces the stored record with a new ``Task`` object.
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.time) -> None:
        self._tasks: dict[str, Task] = {}
        self._ttl = ttl_seconds
        self._clock = clock

    def create(self, task: Task) -> Task:
        now = self._clock()
        record = task.model_copy(update={"created_at": now, "updated_at": now})
        self._tasks[record.id] = record
        return record

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def patch(self, task_id: str, **changes: Any) -> Optional[Task]:
        """Shallow-merge ``changes`` into a task.

        Args:
            task_id: Task to update
            **changes: Task fields to overwrite; ``detail`` is merged key-wise

        Returns:
            The new record, or None if the task does not exist
        """
        current = self._tasks.get(task_id)
        if current is None:
            return None

        now = self._clock()
        if "detail" in changes:
            changes["detail"] = {**current.detail, **changes["detail"]}
        changes["updated_at"] = now

        status = changes.get("status", current.status)
        if is_terminal(status) and current.expires_at is None:
            changes["expires_at"] = now + self._ttl

        record = current.model_copy(update=changes)
        self._tasks[task_id] = record
        return record

    def delete(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    def sweep_expired(self) -> int:
        """Evict terminal tasks past their expiry.

        Returns:
            Number of evicted tasks
        """
        now = self._clock()
        expired = [
            task_id
            for task_id, task in self._tasks.items()
            if task.expires_at is not None and task.expires_at <= now
        ]
        for task_id in expired:
            del self._tasks[task_id]
        if expired:
            logger.info(f"Swept {len(expired)} expired task(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._tasks))
