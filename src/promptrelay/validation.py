"""Input validation for relay targets and reply payloads."""

import re
from dataclasses import dataclass

from promptrelay.errors import InvalidTargetError

# tmux session names accepted as relay targets
TARGET_PATTERN = re.compile(r"[A-Za-z0-9_-]+", re.ASCII)

# Max reply payload delivered to a pane (4KB)
MAX_PAYLOAD_SIZE = 4096

_LINE_BREAKS = re.compile(r"\r\n|[\r\n\x85\u2028\u2029]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f\x80-\x9f]")


@dataclass
class ValidationError:
    """Validation error with code and message."""

    code: str
    message: str


def validate_target(target: str) -> ValidationError | None:
    """Validate relay target format.

    Args:
        target: tmux session name.

    Returns:
        ValidationError if invalid, None if valid.
    """
    if not isinstance(target, str) or not target:
        return ValidationError("INVALID_TARGET", "Relay target is required")

    if not TARGET_PATTERN.fullmatch(target):
        return ValidationError(
            "INVALID_TARGET",
            "Relay target may only contain letters, digits, '_' and '-'",
        )

    return None


def ensure_valid_target(target: str) -> str:
    """Return target unchanged or raise InvalidTargetError."""
    if validate_target(target) is not None:
        raise InvalidTargetError(target)
    return target


def sanitize_payload(text: str) -> str:
    """Make reply text safe to type into a pane as literal keystrokes.

    Line breaks become spaces so the payload can never submit on its own;
    remaining control characters (ESC included) are dropped. Tabs are kept.

    Args:
        text: Operator reply text.

    Returns:
        Sanitised payload, capped at MAX_PAYLOAD_SIZE characters.
    """
    text = _LINE_BREAKS.sub(" ", text)
    text = _CONTROL_CHARS.sub("", text)
    return text[:MAX_PAYLOAD_SIZE]
