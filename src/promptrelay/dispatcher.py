"""Notification dispatcher: agent event in, operator message out."""

import logging

from promptrelay.errors import InvalidTargetError, TargetNotFoundError, TmuxError
from promptrelay.models import AgentEvent, DispatchOutcome, Session
from promptrelay.protocols import MessageChannelProtocol, RelayClientProtocol
from promptrelay.redact import format_for_channel
from promptrelay.registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_LINES = 8

# Agent-supplied notification text shown above the pane context
MAX_EVENT_MESSAGE_CHARS = 200

WELCOME_TEMPLATE = (
    "Prompt relay connected: {name}.\n"
    "Reply with text to answer its prompts. With several sessions active, "
    "start your reply with the session number (e.g., '1 Y').\n"
    "Text OFF to pause notifications, ON to resume."
)

SINGLE_TEMPLATE = "{header}\n\n{context}\n\nReply Y/N or text response"

MULTI_TEMPLATE = (
    "{header}\n\n{listing}\n\n{context}\n\n"
    "Reply with number + response (e.g., '{number} Y')"
)


def format_single(name: str, context: str, message: str = "") -> str:
    """Message for the single-session case."""
    return SINGLE_TEMPLATE.format(header=_header(name, message), context=context)


def format_multi(
    sessions: list[Session],
    session_id: str,
    context: str,
    message: str = "",
) -> str:
    """Message listing every active session with 1-based numbers.

    Args:
        sessions: Active sessions in registration order.
        session_id: Session that triggered the notification.
        context: Redacted pane context of the triggering session.
        message: Optional agent-supplied notification text.
    """
    number = 1
    name = session_id
    lines = []
    for i, session in enumerate(sessions, start=1):
        lines.append(f"[{i}] {session.display_name}")
        if session.session_id == session_id:
            number = i
            name = session.display_name

    return MULTI_TEMPLATE.format(
        header=_header(f"[{number}] {name}", message),
        listing="\n".join(lines),
        context=context,
        number=number,
    )


def _header(name: str, message: str) -> str:
    header = f"{name} needs input:"
    if message:
        header = f"{header}\n{message}"
    return header


class NotificationDispatcher:
    """Decides whether an agent event becomes an operator message.

    Every event registers (or refreshes) its session, even while disarmed,
    so numbering stays stable. Messages are only sent when armed and
    outside the per-session throttle window.

    Usage:
        dispatcher = NotificationDispatcher(registry, tmux, channel)
        outcome = await dispatcher.handle_event(event)
    """

    def __init__(
        self,
        registry: SessionRegistry,
        relay: RelayClientProtocol,
        channel: MessageChannelProtocol,
        capture_lines: int = DEFAULT_CAPTURE_LINES,
    ):
        """Initialize NotificationDispatcher.

        Args:
            registry: Session registry.
            relay: Client used to capture pane context.
            channel: Outbound channel; also supplies the context budgets.
            capture_lines: Pane lines captured for context.
        """
        self._registry = registry
        self._relay = relay
        self._channel = channel
        self._capture_lines = capture_lines

    async def handle_event(self, event: AgentEvent) -> DispatchOutcome:
        """Handle one agent event.

        Never raises: capture and send failures are logged and turned into
        an outcome.

        Args:
            event: Parsed hook payload.

        Returns:
            What happened to the event.
        """
        try:
            is_new = self._registry.register(
                event.session_id, event.relay_target, event.display_name
            )
        except InvalidTargetError as e:
            logger.warning("Rejected event for %s: %s", event.session_id, e)
            return DispatchOutcome.INVALID_TARGET

        if not self._registry.is_armed():
            logger.debug("Not armed, skipping notification for %s", event.session_id)
            return DispatchOutcome.NOT_ARMED

        if is_new:
            await self._send(WELCOME_TEMPLATE.format(name=event.display_name))

        if not self._registry.claim_notification(event.session_id):
            logger.debug("Notification throttled for %s", event.session_id)
            return DispatchOutcome.THROTTLED

        context = await self._capture(event)
        text = self._format(event, context)

        if not await self._send(text):
            return DispatchOutcome.SEND_FAILED

        logger.info("Notification sent for %s (%s)", event.session_id, event.display_name)
        return DispatchOutcome.SENT

    async def _capture(self, event: AgentEvent) -> str:
        """Capture raw pane context, or a placeholder if that fails."""
        try:
            return await self._relay.capture_tail(event.relay_target, self._capture_lines)
        except (TargetNotFoundError, TmuxError, InvalidTargetError) as e:
            logger.warning("Failed to capture context for %s: %s", event.relay_target, e)
            return f'{event.display_name} needs input in session "{event.relay_target}"'

    def _format(self, event: AgentEvent, raw_context: str) -> str:
        ascii_only = self._channel.ascii_only
        message = ""
        if event.message.strip():
            message = format_for_channel(
                event.message, MAX_EVENT_MESSAGE_CHARS, ascii_only=ascii_only
            )

        sessions = self._registry.list_active()
        if len(sessions) <= 1:
            context = format_for_channel(
                raw_context, self._channel.max_context_chars, ascii_only=ascii_only
            )
            return format_single(event.display_name, context, message)

        context = format_for_channel(
            raw_context, self._channel.multi_context_chars, ascii_only=ascii_only
        )
        return format_multi(sessions, event.session_id, context, message)

    async def _send(self, text: str) -> bool:
        try:
            await self._channel.send(text)
            return True
        except Exception as e:
            logger.error("Failed to send notification: %s", e)
            return False

