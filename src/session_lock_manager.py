"""
Per-session write locks.

Applying a scan reads a line, checks it and writes it back. Two operators
interleaving on the same session could both pass the checks against stale
quantities, so every mutation of a session runs while holding that session's
lock. Different sessions never wait for each other.

Writers in other processes sharing a database are caught by the store's
version check instead (see session_store).
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, Optional

from exceptions import ConcurrentModification
from logger import get_logger


class SessionLockManager:
    """
    Manages one lock per session id.

    Features:
    - Lazy lock creation per session
    - Bounded wait; a timeout raises ConcurrentModification
    - Holder details (thread, lock time) for diagnostics
    """

    def __init__(self, timeout_seconds: float = 5.0):
        """
        Args:
            timeout_seconds: Maximum wait for a session held by another writer
        """
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger(self.__class__.__name__)
        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._holders: Dict[str, dict] = {}
        # callers currently holding or waiting for each lock
        self._users: Dict[str, int] = {}

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            self._users[session_id] = self._users.get(session_id, 0) + 1
            return lock

    def _leave(self, session_id: str) -> None:
        with self._registry_lock:
            remaining = self._users.get(session_id, 0) - 1
            if remaining > 0:
                self._users[session_id] = remaining
            else:
                self._users.pop(session_id, None)

    def acquire_lock(self, session_id: str) -> None:
        """
        Block until the session lock is free or the timeout expires.

        Raises:
            ConcurrentModification: Another writer held the session too long
        """
        lock = self._lock_for(session_id)
        if not lock.acquire(timeout=self.timeout_seconds):
            self._leave(session_id)
            holder = self._holders.get(session_id, {})
            self.logger.warning(
                f"Timed out waiting for session {session_id}",
                extra={"extra_data": {"session_id": session_id, "held_by": holder.get('thread')}}
            )
            raise ConcurrentModification(
                f"Session {session_id} is being modified by another operation",
                session_id=session_id
            )

        self._holders[session_id] = {
            'thread': threading.current_thread().name,
            'lock_time': datetime.now().isoformat(),
        }

    def release_lock(self, session_id: str) -> None:
        lock = self._locks.get(session_id)
        if lock is None or not lock.locked():
            self.logger.debug(f"No lock to release for session {session_id}")
            return

        self._holders.pop(session_id, None)
        lock.release()
        self._leave(session_id)

    def is_locked(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def get_lock_info(self, session_id: str) -> Optional[dict]:
        """Holder details of a locked session, or None."""
        if not self.is_locked(session_id):
            return None
        return dict(self._holders.get(session_id, {}))

    @contextmanager
    def locked(self, session_id: str) -> Iterator[None]:
        """
        Hold the session lock for the duration of the block.

        Usage:
            with lock_manager.locked(session_id):
                session = store.load(session_id)
                ...
                store.save(session)
        """
        self.acquire_lock(session_id)
        try:
            yield
        finally:
            self.release_lock(session_id)

    def forget(self, session_id: str) -> None:
        """Drop the lock of a finished session unless someone holds or waits for it."""
        with self._registry_lock:
            if session_id in self._locks and not self._users.get(session_id):
                del self._locks[session_id]
