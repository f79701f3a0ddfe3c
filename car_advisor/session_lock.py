"""
SessionLockManager - per-session locks for session_id handling.

One lock per session id, so concurrent events for the same session are
serialized while other sessions proceed independently. A lock lives only
while someone holds or waits for it.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class SessionLockManager:
    """Acquire per-session locks within the process."""

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}
        self._registry_lock = threading.Lock()

    def _acquire_entry(self, session_id: str) -> _LockEntry:
        with self._registry_lock:
            entry = self._entries.get(session_id)
            if entry is None:
                entry = _LockEntry()
                self._entries[session_id] = entry
            entry.users += 1
            return entry

    def _release_entry(self, session_id: str, entry: _LockEntry) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[session_id]

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        """Context manager for session lock."""
        entry = self._acquire_entry(session_id)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(session_id, entry)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)
