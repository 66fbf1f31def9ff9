"""Page tokens for outputs larger than one tool response."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_PAGE_TTL_SECONDS = 10 * 60


@dataclass
class _PageEntry:
    remaining: str
    expires_at: float


class PageStore:
    """Remaining-output buffers keyed by opaque token.

    A token keeps its identity while it is advanced, so a retried fetch with
    the same token is harmless. Exhausted, expired and unknown tokens all look
    the same: :meth:`peek` returns ``None``.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_PAGE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _PageEntry] = {}

    def __len__(self) -> int:
        self._sweep()
        return len(self._entries)

    def _sweep(self) -> None:
        now = self._clock()
        for token in [t for t, e in self._entries.items() if e.expires_at < now]:
            del self._entries[token]

    def save(self, remaining: str) -> str:
        self._sweep()
        token = uuid.uuid4().hex
        self._entries[token] = _PageEntry(remaining, self._clock() + self.ttl_seconds)
        return token

    def peek(self, token: str) -> str | None:
        self._sweep()
        entry = self._entries.get(token)
        return entry.remaining if entry else None

    def advance(self, token: str, consumed: int) -> None:
        """Drop the first ``consumed`` characters; unknown tokens are ignored."""
        self._sweep()
        entry = self._entries.get(token)
        if entry is None:
            return
        remaining = entry.remaining[consumed:]
        if not remaining:
            del self._entries[token]
            return
        entry.remaining = remaining
        entry.expires_at = self._clock() + self.ttl_seconds


__all__ = ["PageStore"]
