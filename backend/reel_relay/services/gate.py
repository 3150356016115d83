"""
Process-wide admission control for pipeline sessions.
"""

import logging
import time
import uuid

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    """Unique session token, safe to embed in filenames."""
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class ConcurrencyGate:
    """
    Caps the number of simultaneous sessions.

    Constructed once at start-up and shared by reference. There is no
    queue: a saturated gate rejects immediately and the caller reports
    "busy" to the requester.

    Check-and-add in try_admit() contains no await, so it is atomic on
    the event loop. A multi-threaded host would need a lock here.

    Example:
        gate = ConcurrencyGate(limit=3)
        session_id = gate.try_admit()
        if session_id is None:
            ...  # busy
        try:
            ...
        finally:
            gate.release(session_id)
    """

    def __init__(self, limit: int = 3):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be positive, got {limit}")
        self.limit = limit
        self._active: set[str] = set()

    def try_admit(self, session_id: str | None = None) -> str | None:
        """
        Admit a new session if a slot is free.

        Args:
            session_id: Id to register (generated when omitted)

        Returns:
            The admitted session id, or None when the gate is saturated
        """
        if len(self._active) >= self.limit:
            logger.info(f"Admission rejected: {len(self._active)}/{self.limit} sessions active")
            return None

        session_id = session_id or new_session_id()
        self._active.add(session_id)
        logger.info(f"Starting new session: {session_id} (Active: {len(self._active)}/{self.limit})")
        return session_id

    def release(self, session_id: str) -> None:
        """Free a slot. Releasing an unknown id is a no-op."""
        if session_id in self._active:
            self._active.discard(session_id)
            logger.info(f"Session {session_id} released. Active sessions: {len(self._active)}")

    @property
    def active(self) -> list[str]:
        return sorted(self._active)

    @property
    def saturated(self) -> bool:
        return len(self._active) >= self.limit
