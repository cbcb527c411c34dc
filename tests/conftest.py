"""Pytest configuration and shared fixtures."""

import asyncio

import pytest
import pytest_asyncio

from promptrelay.errors import ChannelSendError, TargetNotFoundError
from promptrelay.validation import ensure_valid_target, sanitize_payload


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from promptrelay.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def cleanup_aiohttp_sessions():
    """Give aiohttp sessions time to clean up their connectors."""
    yield
    await asyncio.sleep(0)


class FakeClock:
    """Manually advanced clock for throttle tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRelay:
    """In-memory stand-in for TmuxService.

    Tracks which tmux sessions exist, what each pane shows, and every
    delivered payload.
    """

    def __init__(self, sessions: dict[str, str] | None = None):
        self.panes: dict[str, str] = dict(sessions or {})
        self.delivered: list[tuple[str, str]] = []
        self.captures: list[tuple[str, int]] = []

    async def exists(self, target: str) -> bool:
        ensure_valid_target(target)
        return target in self.panes

    async def capture_tail(self, target: str, lines: int) -> str:
        ensure_valid_target(target)
        if target not in self.panes:
            raise TargetNotFoundError(target)
        self.captures.append((target, lines))
        return self.panes[target]

    async def deliver_literal(self, target: str, text: str) -> None:
        ensure_valid_target(target)
        if target not in self.panes:
            raise TargetNotFoundError(target)
        payload = sanitize_payload(text)
        if not payload.strip():
            raise ValueError("Refusing to deliver an empty payload")
        self.delivered.append((target, payload))


class FakeChannel:
    """Records outbound messages instead of sending them."""

    def __init__(
        self,
        name: str = "telegram",
        max_context_chars: int = 4000,
        multi_context_chars: int = 3000,
        ascii_only: bool = False,
        operator_id: str | None = "42",
    ):
        self.name = name
        self.max_context_chars = max_context_chars
        self.multi_context_chars = multi_context_chars
        self.ascii_only = ascii_only
        self.operator_id = operator_id
        self.sent: list[str] = []
        self.fail = False
        self.closed = False

    async def send(self, text: str) -> None:
        if self.fail:
            raise ChannelSendError("send failed")
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def sms_channel():
    return FakeChannel(
        name="sms",
        max_context_chars=450,
        multi_context_chars=300,
        ascii_only=True,
        operator_id="+15550001111",
    )
