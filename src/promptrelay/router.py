"""Routes operator replies to agent sessions.

Grammar, checked in order on the trimmed reply:

- ``ON`` / ``OFF`` (any case): arm or disarm notifications. Never relayed.
- ``<n> <payload>``: deliver payload to session n (1-based).
- anything else: deliver the whole text to the only active session.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from promptrelay.errors import InvalidTargetError, TargetNotFoundError, TmuxError
from promptrelay.models import RouteOutcome, RouteResult, Session
from promptrelay.protocols import MessageChannelProtocol, RelayClientProtocol
from promptrelay.registry import SessionRegistry
from promptrelay.validation import sanitize_payload, validate_target

logger = logging.getLogger(__name__)

NUMBERED_REPLY = re.compile(r"^([0-9]+)\s+(.+)$", re.DOTALL)

ARMED_MESSAGE = (
    "Notifications ARMED. You will receive alerts when an agent needs input."
)
DISARMED_MESSAGE = (
    "Notifications DISARMED. No alerts will be sent until you text ON."
)
EMPTY_PAYLOAD_MESSAGE = (
    "Please send a text response (e.g., Y, N, or custom text)."
)
AMBIGUOUS_MESSAGE = (
    "Multiple sessions active. Reply with number + response (e.g., '1 Y')."
)
NO_SESSIONS_MESSAGE = "No active sessions. Wait for a notification first."


@dataclass
class ParsedReply:
    """A reply split into its control, index and payload parts."""

    command: Optional[str] = None  # "ON" or "OFF"
    index: Optional[int] = None  # 0-based session index
    payload: str = ""


def parse_reply(text: str) -> ParsedReply:
    """Parse an operator reply.

    Args:
        text: Raw reply text.

    Returns:
        ParsedReply with command set for ON/OFF, index set for a numbered
        reply, otherwise just the trimmed payload.
    """
    stripped = text.strip()

    upper = stripped.upper()
    if upper in ("ON", "OFF"):
        return ParsedReply(command=upper)

    match = NUMBERED_REPLY.match(stripped)
    if match:
        try:
            number = int(match.group(1))
        except ValueError:
            # Beyond the interpreter's int-from-str digit limit
            number = None
        if number is not None:
            return ParsedReply(index=number - 1, payload=match.group(2).strip())

    return ParsedReply(payload=stripped)


class ReplyRouter:
    """Turns one operator reply into at most one delivery.

    Holds no state between replies beyond the registry. Errors from the
    relay client or the channel are logged and reported to the operator,
    never raised.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        relay: RelayClientProtocol,
        channel: MessageChannelProtocol,
        fallback_target: Optional[str] = None,
    ):
        """Initialize ReplyRouter.

        Args:
            registry: Session registry.
            relay: Client used to check and type into tmux sessions.
            channel: Channel used for replies to the operator.
            fallback_target: tmux session used when no session is
                registered (single-session setups).
        """
        self._registry = registry
        self._relay = relay
        self._channel = channel
        self._fallback_target = fallback_target

    async def handle_reply(self, text: str) -> RouteResult:
        """Handle one operator reply.

        Args:
            text: Reply text as received from the channel.

        Returns:
            RouteResult describing what happened.
        """
        parsed = parse_reply(text or "")

        if parsed.command == "ON":
            self._registry.set_armed(True)
            return await self._finish(RouteOutcome.ARMED, ARMED_MESSAGE)

        if parsed.command == "OFF":
            self._registry.set_armed(False)
            return await self._finish(RouteOutcome.DISARMED, DISARMED_MESSAGE)

        if not sanitize_payload(parsed.payload).strip():
            logger.warning("Received empty reply")
            return await self._finish(RouteOutcome.EMPTY_PAYLOAD, EMPTY_PAYLOAD_MESSAGE)

        if parsed.index is not None:
            session = self._registry.by_index(parsed.index)
            if session is None:
                number = parsed.index + 1
                logger.warning("Invalid session number: %d", number)
                return await self._finish(
                    RouteOutcome.INVALID_INDEX,
                    f"Invalid session number {number}. "
                    f"{self._describe_sessions()}",
                    payload=parsed.payload,
                )
            logger.info(
                "Routing numbered reply to %s (index %d)",
                session.display_name,
                parsed.index,
            )
            return await self._relay_to(
                session.relay_target, session.display_name, parsed.payload, session
            )

        sessions = self._registry.list_active()

        if len(sessions) == 1:
            session = sessions[0]
            logger.info("Single session active, routing to %s", session.display_name)
            return await self._relay_to(
                session.relay_target, session.display_name, parsed.payload, session
            )

        if len(sessions) > 1:
            logger.warning("Multiple sessions active, numbered reply required")
            return await self._finish(
                RouteOutcome.AMBIGUOUS, AMBIGUOUS_MESSAGE, payload=parsed.payload
            )

        if not self._fallback_target:
            logger.warning("No active sessions and no fallback target")
            return await self._finish(
                RouteOutcome.NO_SESSIONS, NO_SESSIONS_MESSAGE, payload=parsed.payload
            )

        logger.info("No active sessions, using fallback target %s", self._fallback_target)
        return await self._relay_to(
            self._fallback_target, self._fallback_target, parsed.payload, None
        )

    async def _relay_to(
        self,
        target: str,
        name: str,
        payload: str,
        session: Optional[Session],
    ) -> RouteResult:
        if validate_target(target) is not None:
            logger.error("Refusing to relay to invalid target %r", target)
            return await self._finish(
                RouteOutcome.INVALID_TARGET,
                f"Error: {name!r} has an invalid tmux session name.",
                session=session,
                payload=payload,
            )

        try:
            exists = await self._relay.exists(target)
            if exists:
                await self._relay.deliver_literal(target, payload)
        except TargetNotFoundError:
            exists = False
        except (InvalidTargetError, TmuxError, ValueError) as e:
            logger.error("Failed to deliver reply to %s: %s", target, e)
            return await self._finish(
                RouteOutcome.DELIVERY_FAILED,
                f"Error delivering reply to {name}. Please try again.",
                session=session,
                payload=payload,
            )

        if not exists:
            logger.error("tmux session %r no longer exists", target)
            self._registry.remove_by_target(target)
            return await self._finish(
                RouteOutcome.TARGET_NOT_FOUND,
                f'Error: tmux session "{target}" not found for "{name}". '
                "The session may have been closed.",
                session=session,
                payload=payload,
            )

        logger.info("Delivered reply to %s: %s", target, payload[:40])
        return RouteResult(RouteOutcome.DELIVERED, session=session, payload=payload)

    def _describe_sessions(self) -> str:
        count = len(self._registry)
        if count == 0:
            return "No sessions are active."
        if count == 1:
            return "Only session 1 is active."
        return f"Active sessions are 1-{count}."

    async def _finish(
        self,
        outcome: RouteOutcome,
        reply: str,
        session: Optional[Session] = None,
        payload: str = "",
    ) -> RouteResult:
        try:
            await self._channel.send(reply)
        except Exception as e:
            logger.error("Failed to send reply to operator: %s", e)
        return RouteResult(outcome, session=session, payload=payload, reply=reply)
