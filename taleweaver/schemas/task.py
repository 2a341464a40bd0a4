"""Pydantic model for task ledger records."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from taleweaver.orchestrator.state import TaskKind, TaskStatus


class Task(BaseModel):
    """Progress/result record for one background job, polled by id.

    Records are replaced as a whole on every patch, so a reader never
    observes a half-applied update.
    """

    id: str
    session_id: str
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    stage: str = ""
    input: dict[str, Any] = Field(default_factory=dict)
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    detail: dict[str, Any] = Field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0
    expires_at: Optional[float] = None
