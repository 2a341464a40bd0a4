"""In-memory session store with sliding-window TTL.

A session's expiry is pushed to ``now + ttl`` on every touching read and
every write. Expired sessions are evicted lazily on lookup and actively
by ``sweep_expired``, which the housekeeper runs on a fixed period.
"""

import logging
import time
from typing import Any, Callable, Iterator, Optional

from taleweaver.errors import ConfigurationError
from taleweaver.schemas.session import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Keyed store of sessions. Mutations replace the whole record."""

    def __init__(
        self,
        ttl_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._ttl = ttl_seconds
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def _new_session(self, session_id: str, now: float) -> Session:
        return Session(
            id=session_id,
            created_at=now,
            updated_at=now,
            last_access_at=now,
            expires_at=now + self._ttl,
        )

    def _live(self, session_id: str, now: float) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if now >= session.expires_at:
            del self._sessions[session_id]
            logger.debug(f"Session {session_id} expired on lookup")
            return None
        return session

    def get(self, session_id: str, touch: bool = True) -> Optional[Session]:
        """Look up a live session.

        Args:
            session_id: Session to look up
            touch: Refresh the sliding expiry when True

        Returns:
            The session, or None when missing or expired
        """
        now = self._clock()
        session = self._live(session_id, now)
        if session is None or not touch:
            return session

        session = session.model_copy(
            update={"last_access_at": now, "expires_at": now + self._ttl}
        )
        self._sessions[session_id] = session
        return session

    def create_if_absent(self, session_id: str) -> Session:
        if not session_id:
            raise ConfigurationError("session_id_required")
        existing = self.get(session_id, touch=True)
        if existing is not None:
            return existing
        session = self._new_session(session_id, self._clock())
        self._sessions[session_id] = session
        logger.debug(f"Session {session_id} created")
        return session

    def patch(
        self,
        session_id: str,
        stage: Optional[str] = None,
        artifacts: Optional[dict[str, Any]] = None,
    ) -> Session:
        """Apply a stage change and/or artifact writes to a session.

        A missing or expired session is recreated empty before the patch is
        applied. Artifacts merge per namespace: each namespace given in
        ``artifacts`` replaces the stored value, others are left untouched.

        Args:
            session_id: Session to update
            stage: New stage, if changing
            artifacts: Mapping of namespace to payload

        Returns:
            The updated session
        """
        if not session_id:
            raise ConfigurationError("session_id_required")
        now = self._clock()
        base = self._live(session_id, now) or self._new_session(session_id, now)

        update: dict[str, Any] = {
            "updated_at": now,
            "last_access_at": now,
            "expires_at": now + self._ttl,
        }
        if stage is not None:
            update["stage"] = stage
        if artifacts:
            update["artifacts"] = {**base.artifacts, **artifacts}

        session = base.model_copy(update=update)
        self._sessions[session_id] = session
        return session

    def sweep_expired(self) -> int:
        """Evict every session whose expiry has passed.

        Returns:
            Number of evicted sessions
        """
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"Swept {len(expired)} expired session(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
