"""Detached background job execution with task-ledger bookkeeping.

A job is spawned onto the running event loop and never awaited by the
caller; the caller only sees the PENDING task record. Every exception a
job raises is caught here and turned into a FAILED task plus a
``<PREFIX>_FAILED`` session stage, so failures are only ever learned by
polling.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Optional

from taleweaver.orchestrator.state import TaskKind, TaskStatus, session_stage
from taleweaver.schemas.task import Task
from taleweaver.store.service import SessionService
from taleweaver.store.tasks import TaskLedger

logger = logging.getLogger(__name__)


class JobContext:
    """Handle a running job uses to report on its own task.

    Progress reported through the context never decreases.
    """

    def __init__(self, task_id: str, session_id: str, ledger: TaskLedger) -> None:
        self.task_id = task_id
        self.session_id = session_id
        self._ledger = ledger

    @property
    def task(self) -> Optional[Task]:
        return self._ledger.get(self.task_id)

    def _progress(self, requested: Optional[int]) -> dict[str, Any]:
        if requested is None:
            return {}
        current = self.task
        floor = current.progress if current is not None else 0
        return {"progress": max(floor, min(100, int(requested)))}

    def start(self, progress: int = 0, stage: str = "") -> None:
        self._ledger.patch(
            self.task_id, status=TaskStatus.RUNNING, stage=stage, **self._progress(progress)
        )

    def report(
        self,
        progress: Optional[int] = None,
        stage: Optional[str] = None,
        **detail: Any,
    ) -> None:
        """Update progress, stage and/or detail fields of the running task."""
        changes: dict[str, Any] = self._progress(progress)
        if stage is not None:
            changes["stage"] = stage
        if detail:
            changes["detail"] = detail
        if changes:
            self._ledger.patch(self.task_id, **changes)

    def complete(
        self,
        result: dict[str, Any],
        status: TaskStatus = TaskStatus.DONE,
        stage: str = "DONE",
        error: Optional[str] = None,
    ) -> None:
        self._ledger.patch(
            self.task_id,
            status=status,
            progress=100,
            stage=stage,
            result=result,
            error=error,
        )

    def fail(self, error: str, stage: str = "FAILED") -> None:
        self._ledger.patch(
            self.task_id, status=TaskStatus.FAILED, progress=100, stage=stage, error=error
        )


JobFunc = Callable[[JobContext], Awaitable[None]]


class JobRunner:
    """Creates task records and runs their jobs detached on the event loop."""

    def __init__(self, ledger: TaskLedger, sessions: SessionService) -> None:
        self.ledger = ledger
        self.sessions = sessions
        self._running: set[asyncio.Task] = set()

    def submit(
        self,
        kind: TaskKind,
        session_id: str,
        job: JobFunc,
        task_input: Optional[dict[str, Any]] = None,
    ) -> Task:
        """Create a PENDING task and schedule ``job`` to run after this call returns.

        Must be called from within a running event loop.

        Args:
            kind: Task kind, also selects the session stage prefix
            session_id: Session the job works on
            job: Coroutine function receiving the job's ``JobContext``
            task_input: Echo of the job inputs stored on the task record

        Returns:
            The PENDING task record
        """
        task = self.ledger.create(
            Task(
                id=str(uuid.uuid4()),
                session_id=session_id,
                kind=kind,
                input=task_input or {},
            )
        )
        handle = asyncio.get_running_loop().create_task(
            self._run(task.id, kind, session_id, job), name=f"{kind.value}:{task.id}"
        )
        self._running.add(handle)
        handle.add_done_callback(self._running.discard)
        logger.info(f"Task {task.id} ({kind.value}) scheduled for session {session_id}")
        return task

    async def _run(self, task_id: str, kind: TaskKind, session_id: str, job: JobFunc) -> None:
        ctx = JobContext(task_id, session_id, self.ledger)
        started = time.monotonic()
        try:
            await job(ctx)
            elapsed = time.monotonic() - started
            logger.info(f"Task {task_id} ({kind.value}) finished in {elapsed:.1f}s")
        except Exception as e:
            elapsed = time.monotonic() - started
            logger.error(
                f"Task {task_id} ({kind.value}) failed after {elapsed:.1f}s: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            ctx.fail(str(e) or type(e).__name__)
            try:
                self.sessions.set_stage(session_id, session_stage(kind, "FAILED"))
            except Exception:
                logger.exception(f"Could not mark session {session_id} failed")

    @property
    def active(self) -> int:
        return len(self._running)

    async def drain(self) -> None:
        """Wait for every spawned job to finish."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
