"""
Session Store - the only owner of active sessions.

Sessions are kept in memory keyed by an opaque id. Each read-modify-write
runs under that session's lock; idle sessions are dropped after ttl_seconds.
Expired entries are swept whenever a new session is created, so the store
stays bounded without a background task.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, TypeVar

from car_advisor.logger import logger
from car_advisor.models import Session
from car_advisor.session_lock import SessionLockManager

T = TypeVar("T")


@dataclass
class SessionEntry:
    session: Session
    last_activity: float
    created_at: float


class SessionStore:
    def __init__(
        self,
        ttl_seconds: int = 3600,
        lock_manager: Optional[SessionLockManager] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._entries: Dict[str, SessionEntry] = {}
        self._entries_lock = threading.Lock()
        self._ttl = ttl_seconds
        self._lock = lock_manager or SessionLockManager()
        self._clock = clock or time.time

    def _is_expired(self, entry: SessionEntry, now: float) -> bool:
        return now - entry.last_activity >= self._ttl

    def _live_entry(self, session_id: str, now: float) -> Optional[SessionEntry]:
        with self._entries_lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            if self._is_expired(entry, now):
                del self._entries[session_id]
                logger.info("Session expired", session_id=session_id)
                return None
            return entry

    def _put(self, session: Session, now: float, created_at: Optional[float] = None) -> None:
        with self._entries_lock:
            self._entries[session.id] = SessionEntry(
                session=session,
                last_activity=now,
                created_at=now if created_at is None else created_at,
            )

    def create(self, session_id: Optional[str] = None) -> Session:
        """Create a fresh session, replacing any existing one with the same id."""
        session_id = session_id or uuid.uuid4().hex
        with self._lock.lock(session_id):
            session = Session(id=session_id)
            self._put(session, self._clock())
        logger.info("New session created", session_id=session_id)
        self.cleanup_expired()
        return session

    def get(self, session_id: str) -> Optional[Session]:
        entry = self._live_entry(session_id, self._clock())
        return entry.session if entry else None

    def get_or_create(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is not None:
            return session
        return self.create(session_id)

    def mutate(
        self,
        session_id: str,
        fn: Callable[[Session], Tuple[Session, T]],
        create_missing: bool = True,
    ) -> T:
        """
        Apply fn to the session under its lock and store the returned session.

        Args:
            session_id: Session id
            fn: Session -> (new Session, result)
            create_missing: Start from a fresh session when none is stored

        Returns:
            The result part of fn's return value

        Raises:
            KeyError: session missing and create_missing is False
        """
        with self._lock.lock(session_id):
            now = self._clock()
            entry = self._live_entry(session_id, now)
            if entry is None:
                if not create_missing:
                    raise KeyError(f"session not found: {session_id}")
                logger.info("New session created", session_id=session_id)
                self.cleanup_expired()
                current, created_at = Session(id=session_id), now
            else:
                current, created_at = entry.session, entry.created_at

            updated, result = fn(current)
            if updated.id != session_id:
                raise ValueError("session id cannot change during mutation")
            self._put(updated, now, created_at=created_at)
            return result

    def remove(self, session_id: str) -> bool:
        with self._lock.lock(session_id):
            with self._entries_lock:
                removed = self._entries.pop(session_id, None) is not None
        if removed:
            logger.info("Session removed", session_id=session_id)
        return removed

    def cleanup_expired(self) -> int:
        """Remove expired sessions."""
        now = self._clock()
        with self._entries_lock:
            expired = [
                sid for sid, entry in self._entries.items()
                if self._is_expired(entry, now)
            ]
            for sid in expired:
                del self._entries[sid]

        if expired:
            logger.info("Cleaned up expired sessions", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._entries_lock:
            return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self.get(session_id) is not None
