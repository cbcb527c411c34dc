"""Registry of active agent sessions plus the global arm switch."""

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Optional

from promptrelay.models import Session
from promptrelay.validation import ensure_valid_target

logger = logging.getLogger(__name__)

# Minimum seconds between two notifications for the same session
DEFAULT_THROTTLE_SECONDS = 5.0


class SessionRegistry:
    """In-memory registry of agent sessions.

    Sessions are kept in registration order; that order is the 1-based
    numbering the operator sees and replies with. The registry starts
    disarmed. State is not persisted: sessions re-register on their next
    event after a restart.

    Every public method holds the lock for its whole read-modify-write, and
    callers get copies of Session objects, never the stored ones.
    """

    def __init__(
        self,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize empty registry.

        Args:
            throttle_seconds: Minimum gap between notifications per session.
            clock: Time source in seconds. Injectable for tests.
        """
        self._sessions: dict[str, Session] = {}
        self._armed = False
        self._throttle_seconds = throttle_seconds
        self._clock = clock
        self._lock = threading.RLock()

    def register(
        self, session_id: str, relay_target: str, display_name: str
    ) -> bool:
        """Register a new session or refresh an existing one.

        Re-registration updates relay_target and display_name but keeps
        registered_at, last_notified_at and the session's position.

        Args:
            session_id: Stable session identifier.
            relay_target: tmux session name for replies.
            display_name: Label shown to the operator.

        Returns:
            True only the first time session_id is seen.

        Raises:
            InvalidTargetError: If relay_target fails validation. Nothing
                is stored or updated in that case.
        """
        ensure_valid_target(relay_target)

        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None:
                existing.relay_target = relay_target
                existing.display_name = display_name
                logger.debug("Session updated: %s (%s)", session_id, display_name)
                return False

            self._sessions[session_id] = Session(
                session_id=session_id,
                relay_target=relay_target,
                display_name=display_name,
                registered_at=self._clock(),
            )

        logger.info("New session registered: %s (%s)", session_id, display_name)
        return True

    def get(self, session_id: str) -> Optional[Session]:
        """Get a copy of a session by ID."""
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def list_active(self) -> list[Session]:
        """Get copies of all sessions in registration order."""
        with self._lock:
            return [replace(s) for s in self._sessions.values()]

    def by_index(self, index: int) -> Optional[Session]:
        """Get session by 0-based position in registration order.

        Args:
            index: Zero-based index (operator's number minus one).

        Returns:
            Session copy, or None if index is out of range or negative.
        """
        with self._lock:
            if index < 0 or index >= len(self._sessions):
                return None
            return replace(list(self._sessions.values())[index])

    def set_armed(self, armed: bool) -> None:
        """Turn outbound notifications on or off globally."""
        with self._lock:
            previous = self._armed
            self._armed = armed
        logger.info("Armed state changed: %s -> %s", previous, armed)

    def is_armed(self) -> bool:
        """Return the global armed state."""
        with self._lock:
            return self._armed

    def can_notify(self, session_id: str) -> bool:
        """Check if a notification may be sent for a session.

        Returns:
            False while disarmed or for an unknown session; True if never
            notified; otherwise True once the throttle window has elapsed.
        """
        with self._lock:
            return self._can_notify_locked(session_id, self._clock())

    def record_notified(self, session_id: str) -> None:
        """Stamp the session's last notification time. No-op if unknown."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_notified_at = self._clock()

    def claim_notification(self, session_id: str) -> bool:
        """can_notify() and record_notified() as one atomic step.

        Returns:
            True if the caller may send now (and the time was recorded).
        """
        with self._lock:
            now = self._clock()
            if not self._can_notify_locked(session_id, now):
                return False
            self._sessions[session_id].last_notified_at = now
            return True

    def _can_notify_locked(self, session_id: str, now: float) -> bool:
        if not self._armed:
            return False

        session = self._sessions.get(session_id)
        if session is None:
            return False

        if session.last_notified_at is None:
            return True

        return now - session.last_notified_at >= self._throttle_seconds

    def remove(self, session_id: str) -> bool:
        """Remove a session.

        Returns:
            True if the session existed.
        """
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info("Session removed: %s (%s)", session_id, removed.display_name)
        return removed is not None

    def find_by_target(self, relay_target: str) -> Optional[str]:
        """Find the first session ID using a relay target."""
        with self._lock:
            for session in self._sessions.values():
                if session.relay_target == relay_target:
                    return session.session_id
        return None

    def remove_by_target(self, relay_target: str) -> list[str]:
        """Remove every session that points at a vanished relay target.

        Returns:
            Removed session IDs.
        """
        with self._lock:
            stale = [
                s.session_id
                for s in self._sessions.values()
                if s.relay_target == relay_target
            ]
            for session_id in stale:
                del self._sessions[session_id]
        for session_id in stale:
            logger.info("Removed stale session: %s (target %s)", session_id, relay_target)
        return stale

    def __len__(self) -> int:
        """Return number of sessions in registry."""
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        """Check if session exists in registry."""
        with self._lock:
            return session_id in self._sessions
