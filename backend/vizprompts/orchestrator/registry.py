"""In-memory session registry with idle expiry and a size cap.

Sessions hold sampled frames and views in memory, so the registry drops
any session idle longer than `idle_seconds` and evicts the least recently
used one once `max_sessions` is reached. Evicted sessions are cancelled,
which makes any in-flight work for them stale.
"""

import logging
import time
from typing import Callable, Optional

from vizprompts.orchestrator.session import PromptSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(
        self,
        idle_seconds: float = 1800.0,
        max_sessions: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_seconds = idle_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        # Insertion order doubles as recency order: get() moves to the end
        self._sessions: dict[str, PromptSession] = {}
        self._last_seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add(self, session: PromptSession) -> None:
        self.prune()
        while len(self._sessions) >= self.max_sessions:
            oldest = next(iter(self._sessions))
            logger.info(f"Session cap {self.max_sessions} reached, evicting {oldest}")
            self._evict(oldest)
        self._sessions[session.id] = session
        self._last_seen[session.id] = self._clock()

    def get(self, session_id: str) -> Optional[PromptSession]:
        self.prune()
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        self._sessions[session_id] = session
        self._last_seen[session_id] = self._clock()
        return session

    def pop(self, session_id: str) -> Optional[PromptSession]:
        self._last_seen.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    def prune(self) -> int:
        """Drop sessions idle past the limit; returns how many were dropped."""
        cutoff = self._clock() - self.idle_seconds
        expired = [sid for sid, seen in self._last_seen.items() if seen < cutoff]
        for session_id in expired:
            logger.info(f"Session {session_id} expired after {self.idle_seconds:.0f}s idle")
            self._evict(session_id)
        return len(expired)

    def clear(self) -> None:
        for session_id in list(self._sessions):
            self._evict(session_id)

    def _evict(self, session_id: str) -> None:
        session = self.pop(session_id)
        if session is not None:
            session.cancel()
