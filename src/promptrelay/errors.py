"""Base exceptions for the prompt relay."""


class RelayError(Exception):
    """Base exception for all relay errors."""

    pass


class ConfigError(RelayError):
    """Configuration is missing or invalid."""

    pass


class InvalidTargetError(RelayError):
    """Relay target name is not allowed (outside [A-Za-z0-9_-])."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(
            f"Invalid relay target: {target!r}. "
            "Only alphanumeric, underscore, and hyphen allowed."
        )


class TmuxError(RelayError):
    """tmux operation error (command failed or timed out)."""

    pass


class TargetNotFoundError(TmuxError):
    """tmux session behind a relay target no longer exists."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"tmux session {target!r} does not exist")


class ChannelError(RelayError):
    """Messaging channel request failed."""

    pass


class ChannelSendError(ChannelError):
    """Outbound message could not be delivered."""

    pass
