"""In-memory, TTL-bounded conversation state keyed by caller session id."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 60 * 60
DEFAULT_SESSION_MAX_BYTES = 400_000


@dataclass(frozen=True)
class Turn:
    """One prompt/response exchange."""

    prompt: str
    response: str
    timestamp: float

    @property
    def size_bytes(self) -> int:
        return len(self.prompt.encode("utf-8")) + len(self.response.encode("utf-8"))


@dataclass
class Session:
    session_id: str
    created_at: float
    last_accessed_at: float
    turns: list[Turn] = field(default_factory=list)
    conversation_id: str | None = None
    total_bytes: int = 0


@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    created_at: float
    last_accessed_at: float
    turn_count: int
    conversation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sessionId": self.session_id,
            "createdAt": self.created_at,
            "lastAccessedAt": self.last_accessed_at,
            "turnCount": self.turn_count,
        }
        if self.conversation_id is not None:
            payload["conversationId"] = self.conversation_id
        return payload


class SessionNotFoundError(KeyError):
    """Raised by :meth:`SessionStore.add_turn` for an unknown session."""


class SessionStore:
    """Session records with lazy expiry.

    Every public method first sweeps sessions whose last access is older than
    ``ttl_seconds``; there is no background timer. Lookups return ``None``
    for absent sessions instead of raising.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        max_bytes: int = DEFAULT_SESSION_MAX_BYTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_bytes = max_bytes
        self._clock = clock
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        self._sweep()
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        self._sweep()
        return session_id in self._sessions

    def _sweep(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        expired = [sid for sid, s in self._sessions.items() if s.last_accessed_at < cutoff]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.debug("Expired %d session(s)", len(expired))

    def ensure(self, session_id: str) -> Session:
        """Create the session if needed and refresh its last-access time."""
        self._sweep()
        now = self._clock()
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id, created_at=now, last_accessed_at=now)
            self._sessions[session_id] = session
            logger.debug("Created session %s", session_id)
        else:
            session.last_accessed_at = now
        return session

    def get(self, session_id: str) -> Session | None:
        self._sweep()
        return self._sessions.get(session_id)

    def reset(self, session_id: str) -> None:
        """Wipe turns and conversation handle, keeping identity and creation time."""
        self._sweep()
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.turns.clear()
        session.total_bytes = 0
        session.conversation_id = None
        session.last_accessed_at = self._clock()
        logger.debug("Reset session %s", session_id)

    def delete(self, session_id: str) -> bool:
        self._sweep()
        return self._sessions.pop(session_id, None) is not None

    def set_conversation_id(self, session_id: str, conversation_id: str) -> None:
        self._sweep()
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.conversation_id = conversation_id
        session.last_accessed_at = self._clock()

    def get_conversation_id(self, session_id: str) -> str | None:
        session = self.get(session_id)
        return session.conversation_id if session else None

    def get_turns(self, session_id: str) -> list[Turn]:
        session = self.get(session_id)
        return list(session.turns) if session else []

    def add_turn(self, session_id: str, turn: Turn) -> None:
        """Append ``turn``, evicting the oldest turns past ``max_bytes``.

        The newest turn is always kept, even when it alone exceeds the cap.

        Raises:
            SessionNotFoundError: If the session was never created with
                :meth:`ensure` (or has expired).
        """
        self._sweep()
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        session.turns.append(turn)
        session.total_bytes += turn.size_bytes
        while session.total_bytes > self.max_bytes and len(session.turns) > 1:
            evicted = session.turns.pop(0)
            session.total_bytes -= evicted.size_bytes
        session.last_accessed_at = self._clock()

    def list_sessions(self) -> list[SessionSummary]:
        self._sweep()
        return [
            SessionSummary(
                session_id=s.session_id,
                created_at=s.created_at,
                last_accessed_at=s.last_accessed_at,
                turn_count=len(s.turns),
                conversation_id=s.conversation_id,
            )
            for s in self._sessions.values()
        ]


__all__ = [
    "Session",
    "SessionNotFoundError",
    "SessionStore",
    "SessionSummary",
    "Turn",
]
