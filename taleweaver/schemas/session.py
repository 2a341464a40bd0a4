"""Pydantic model for session store records."""

from typing import Any

from pydantic import BaseModel, Field

from taleweaver.orchestrator.state import INITIAL_STAGE


class Session(BaseModel):
    """Long-lived per-conversation state holding named artifacts."""

    id: str
    stage: str = INITIAL_STAGE
    artifacts: dict[str, Any] = Field(default_factory=dict)
    created_at: float
    updated_at: float
    last_access_at: float
    expires_at: float

    def artifact(self, namespace: str) -> dict[str, Any]:
        """Return the payload under a namespace, or an empty dict."""
        value = self.artifacts.get(namespace)
        return value if isinstance(value, dict) else {}
