"""Server-side conversation memory.

Transcripts live in process memory only and are keyed by session id. The
registry lock guards the id -> session map; each session carries its own lock
for its turn list, so traffic on one session never waits on another beyond
the map lookup.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from chat.models import Transcript, Turn


logger = logging.getLogger("chatrelay.memory")


@dataclass
class _Session:
    last_access: float
    turns: List[Turn] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)
    exchange_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConversationStore:
    """In-memory mapping of session id to an append-only transcript."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, _Session] = {}
        self._registry_lock = threading.Lock()

    def _lookup(self, session_id: str, create: bool) -> Optional[_Session]:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            now = self._clock()
            if session is None:
                if not create:
                    return None
                session = _Session(last_access=now)
                self._sessions[session_id] = session
            else:
                session.last_access = now
            return session

    def get(self, session_id: str) -> Transcript:
        session = self._lookup(session_id, create=False)
        if session is None:
            return ()
        with session.lock:
            return tuple(session.turns)

    def append_turn(self, session_id: str, turn: Turn) -> None:
        session = self._lookup(session_id, create=True)
        with session.lock:
            session.turns.append(turn)

    def session_lock(self, session_id: str) -> asyncio.Lock:
        """Lock held for a whole chat exchange on one session."""
        return self._lookup(session_id, create=True).exchange_lock

    def clear(self, session_id: str) -> None:
        """Empty a transcript in place, keeping its locks."""
        session = self._lookup(session_id, create=False)
        if session is None:
            return
        with session.lock:
            session.turns.clear()

    def discard(self, session_id: str) -> bool:
        """Drop a session unless an exchange on it is in flight."""
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None or session.exchange_lock.locked():
                return False
            del self._sessions[session_id]
            return True

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        """Drop sessions idle for longer than ``ttl_seconds``.

        Sessions with an exchange in flight are kept regardless of age.
        """
        if not self.ttl_seconds:
            return []
        if now is None:
            now = self._clock()
        cutoff = now - self.ttl_seconds
        with self._registry_lock:
            expired = [
                sid
                for sid, session in self._sessions.items()
                if session.last_access < cutoff and not session.exchange_lock.locked()
            ]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("Evicted %s idle sessions (remaining=%s)", len(expired), len(self))
        return expired

    def __contains__(self, session_id: object) -> bool:
        with self._registry_lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)
