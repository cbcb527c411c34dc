"""Protocols for the collaborators the relay core depends on."""

from dataclasses import dataclass
from typing import Protocol


@dataclass
class TmuxSessionInfo:
    """Information about a tmux session."""

    id: str  # e.g., "$0"
    name: str  # e.g., "claude"
    windows: int  # Number of windows
    attached: bool  # Is someone attached?


class CommandExecutorProtocol(Protocol):
    """Protocol for running external commands."""

    async def run(
        self, *args: str, check: bool = True
    ) -> tuple[bytes, bytes, int]:
        """Run command and return (stdout, stderr, returncode)."""
        ...


class RelayClientProtocol(Protocol):
    """Safe access to the terminal sessions replies are typed into.

    Every method validates the target name first and raises
    InvalidTargetError for names outside [A-Za-z0-9_-].
    """

    async def exists(self, target: str) -> bool:
        """Return True if the tmux session exists."""
        ...

    async def capture_tail(self, target: str, lines: int) -> str:
        """Return the last lines of pane output. Raises TargetNotFoundError."""
        ...

    async def deliver_literal(self, target: str, text: str) -> None:
        """Type text literally, then submit with a separate Enter key."""
        ...


class MessageChannelProtocol(Protocol):
    """Outbound messaging to the single operator."""

    name: str
    max_context_chars: int  # Context budget, single-session template
    multi_context_chars: int  # Context budget, numbered-list template
    ascii_only: bool

    @property
    def operator_id(self) -> str | None:
        """Identity replies are accepted from (chat ID or phone number)."""
        ...

    async def send(self, text: str) -> None:
        """Deliver text to the operator. Raises ChannelSendError."""
        ...

    async def close(self) -> None:
        """Release the HTTP session."""
        ...
