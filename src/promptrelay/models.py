"""Data types shared by the registry, router and dispatcher."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


@dataclass
class Session:
    """One registered agent session.

    Attributes:
        session_id: Stable identifier supplied by the agent hook.
        relay_target: tmux session name replies are delivered into.
        display_name: Label shown to the operator.
        registered_at: Set at first registration, never changed.
        last_notified_at: None until the first notification is sent.
    """

    session_id: str
    relay_target: str
    display_name: str
    registered_at: float
    last_notified_at: Optional[float] = None


@dataclass
class AgentEvent:
    """Inbound notification from an agent hook."""

    session_id: str
    relay_target: str
    display_name: str
    message: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AgentEvent":
        """Build an event from a hook JSON payload.

        Accepts both the current field names and the older hook names
        (tmux_session, project_name).

        Raises:
            ValueError: If session_id is missing or not a string.
        """
        session_id = payload.get("session_id")
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValueError("session_id is required")
        session_id = session_id.strip()

        relay_target = payload.get("relay_target") or payload.get("tmux_session")
        if not isinstance(relay_target, str) or not relay_target.strip():
            relay_target = session_id

        display_name = payload.get("display_name") or payload.get("project_name")
        if not isinstance(display_name, str) or not display_name.strip():
            display_name = relay_target

        message = payload.get("message")
        if not isinstance(message, str):
            message = ""

        return cls(
            session_id=session_id,
            relay_target=relay_target.strip(),
            display_name=display_name.strip(),
            message=message,
        )


class RouteOutcome(Enum):
    """Result of routing one operator reply."""

    ARMED = "armed"
    DISARMED = "disarmed"
    DELIVERED = "delivered"
    EMPTY_PAYLOAD = "empty_payload"
    INVALID_INDEX = "invalid_index"
    AMBIGUOUS = "ambiguous"
    NO_SESSIONS = "no_sessions"
    TARGET_NOT_FOUND = "target_not_found"
    INVALID_TARGET = "invalid_target"
    DELIVERY_FAILED = "delivery_failed"


@dataclass
class RouteResult:
    """What the router did with a reply."""

    outcome: RouteOutcome
    session: Optional[Session] = None
    payload: str = ""
    reply: Optional[str] = None  # Message sent back to the operator


class DispatchOutcome(Enum):
    """Result of handling one agent event."""

    SENT = "sent"
    NOT_ARMED = "not_armed"
    THROTTLED = "throttled"
    INVALID_TARGET = "invalid_target"
    SEND_FAILED = "send_failed"
