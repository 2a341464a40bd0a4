"""Session service: the artifact operations pipelines actually call."""

import copy
import logging
from typing import Any, Optional

from taleweaver.errors import ConfigurationError
from taleweaver.schemas.session import Session
from taleweaver.store.sessions import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 24


class SessionService:
    """Namespaced artifact writes, bounded message logs and stage changes."""

    def __init__(
        self,
        store: SessionStore,
        max_messages: int = DEFAULT_MAX_MESSAGES,
    ) -> None:
        self.store = store
        self.max_messages = max_messages

    def ensure(self, session_id: str) -> Session:
        if not session_id:
            raise ConfigurationError("session_id_required")
        return self.store.create_if_absent(session_id)

    def get(self, session_id: str) -> Optional[Session]:
        if not session_id:
            raise ConfigurationError("session_id_required")
        return self.store.get(session_id, touch=True)

    def write_artifact(self, session_id: str, namespace: str, data: dict[str, Any]) -> Session:
        """Replace the payload stored under ``namespace``.

        The payload is deep-copied so later mutation by the caller cannot
        leak into the stored session. ``created_at`` is stamped if absent.

        Args:
            session_id: Target session (created if missing)
            namespace: Artifact namespace, e.g. ``scene_images``
            data: New payload for the namespace

        Returns:
            The updated session
        """
        if not session_id:
            raise ConfigurationError("session_id_required")
        if not namespace:
            raise ConfigurationError("artifact_namespace_required")

        payload = copy.deepcopy(data)
        payload.setdefault("created_at", self.store.now())
        return self.store.patch(session_id, artifacts={namespace: payload})

    def append_messages(
        self,
        session_id: str,
        namespace: str,
        new_messages: list[dict[str, Any]],
        max_messages: Optional[int] = None,
    ) -> Session:
        """Append to the ``messages`` list of a namespace, keeping the last N."""
        if not session_id:
            raise ConfigurationError("session_id_required")
        if not namespace:
            raise ConfigurationError("artifact_namespace_required")

        limit = max_messages or self.max_messages
        session = self.ensure(session_id)
        current = session.artifact(namespace)
        messages = list(current.get("messages") or [])
        messages.extend(new_messages)
        return self.write_artifact(
            session_id, namespace, {**current, "messages": messages[-limit:]}
        )

    def set_stage(self, session_id: str, stage: str) -> Session:
        if not session_id:
            raise ConfigurationError("session_id_required")
        logger.debug(f"Session {session_id} stage -> {stage}")
        return self.store.patch(session_id, stage=stage)
