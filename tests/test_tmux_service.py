"""Tests for TmuxService."""

import sys

import pytest

from promptrelay.errors import InvalidTargetError, TargetNotFoundError, TmuxError
from promptrelay.tmux import AsyncCommandExecutor, TmuxService


class MockCommandExecutor:
    """Mock command executor for testing."""

    def __init__(self):
        self.responses: dict[str, tuple[bytes, bytes, int]] = {}
        self.calls: list[tuple[str, ...]] = []
        self.raise_exception: Exception | None = None

    def add_response(
        self,
        command_contains: str,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ):
        """Add a canned response for commands containing a string."""
        self.responses[command_contains] = (
            stdout.encode(),
            stderr.encode(),
            returncode,
        )

    async def run(
        self, *args: str, check: bool = True
    ) -> tuple[bytes, bytes, int]:
        """Run command and return canned response."""
        self.calls.append(args)

        if self.raise_exception:
            raise self.raise_exception

        for key, response in self.responses.items():
            if key in " ".join(args):
                stdout, stderr, returncode = response
                if check and returncode != 0:
                    raise TmuxError(f"Command failed: {stderr.decode()}")
                return response

        # Default: success with empty output
        return b"", b"", 0


@pytest.fixture
def executor():
    return MockCommandExecutor()


@pytest.fixture
def service(executor):
    return TmuxService(executor=executor)


class TestTmuxServiceCreation:
    """Test TmuxService creation."""

    def test_create_with_executor(self, executor):
        service = TmuxService(executor=executor)
        assert service._executor is executor

    def test_create_default_executor(self):
        service = TmuxService()
        assert isinstance(service._executor, AsyncCommandExecutor)

    @pytest.mark.asyncio
    async def test_socket_path_prepended(self, executor):
        service = TmuxService(executor=executor, tmux_path="/opt/tmux", socket_path="/tmp/s")

        await service.exists("claude")

        assert executor.calls[0][:3] == ("/opt/tmux", "-S", "/tmp/s")


# =============================================================================
# exists
# =============================================================================

class TestExists:
    """Session existence checks."""

    @pytest.mark.asyncio
    async def test_exists_uses_exact_match(self, service, executor):
        assert await service.exists("proj") is True
        assert executor.calls == [("tmux", "has-session", "-t", "=proj")]

    @pytest.mark.asyncio
    async def test_missing_session(self, service, executor):
        executor.add_response("has-session", stderr="can't find session", returncode=1)
        assert await service.exists("proj") is False

    @pytest.mark.asyncio
    async def test_tmux_failure_propagates(self, service, executor):
        executor.raise_exception = TmuxError("Command timed out after 5.0s: tmux has-session")
        with pytest.raises(TmuxError, match="timed out"):
            await service.exists("proj")

    @pytest.mark.asyncio
    async def test_invalid_target_never_reaches_tmux(self, service, executor):
        with pytest.raises(InvalidTargetError):
            await service.exists("proj;ls")
        assert executor.calls == []


# =============================================================================
# capture_tail
# =============================================================================

class TestCaptureTail:
    """Pane context capture."""

    @pytest.mark.asyncio
    async def test_capture_command(self, service, executor):
        executor.add_response("capture-pane", stdout="line1\nDo you want to proceed?\n")

        output = await service.capture_tail("claude", 8)

        assert output == "line1\nDo you want to proceed?\n"
        assert executor.calls[-1] == (
            "tmux", "capture-pane", "-p", "-t", "=claude:", "-S", "-8",
        )

    @pytest.mark.asyncio
    async def test_capture_missing_session(self, service, executor):
        executor.add_response("has-session", returncode=1)

        with pytest.raises(TargetNotFoundError):
            await service.capture_tail("gone", 8)

        assert all("capture-pane" not in call for call in executor.calls)

    @pytest.mark.asyncio
    async def test_capture_invalid_utf8_replaced(self, service, executor):
        executor.responses["capture-pane"] = (b"ok \xff\xfe", b"", 0)
        assert await service.capture_tail("claude", 8) == "ok \ufffd\ufffd"

    @pytest.mark.asyncio
    async def test_capture_failure_raises(self, service, executor):
        executor.add_response("capture-pane", stderr="boom", returncode=1)

        with pytest.raises(TmuxError):
            await service.capture_tail("claude", 8)


# =============================================================================
# deliver_literal
# =============================================================================

class TestDeliverLiteral:
    """Typing replies into a pane."""

    @pytest.mark.asyncio
    async def test_literal_then_separate_enter(self, service, executor):
        await service.deliver_literal("claude", "Y")

        assert executor.calls[1:] == [
            ("tmux", "send-keys", "-t", "=claude:", "-l", "--", "Y"),
            ("tmux", "send-keys", "-t", "=claude:", "Enter"),
        ]

    @pytest.mark.asyncio
    async def test_payload_that_looks_like_a_key_name_is_literal(self, service, executor):
        await service.deliver_literal("claude", "C-c")

        assert executor.calls[1] == ("tmux", "send-keys", "-t", "=claude:", "-l", "--", "C-c")

    @pytest.mark.asyncio
    async def test_payload_with_newline_is_single_line(self, service, executor):
        await service.deliver_literal("claude", "yes\nrm -rf /\n")

        assert executor.calls[1][-1] == "yes rm -rf / "
        send_keys = [c for c in executor.calls if "send-keys" in c]
        assert len(send_keys) == 2

    @pytest.mark.asyncio
    async def test_missing_session_sends_nothing(self, service, executor):
        executor.add_response("has-session", returncode=1)

        with pytest.raises(TargetNotFoundError):
            await service.deliver_literal("gone", "Y")

        assert all("send-keys" not in call for call in executor.calls)

    @pytest.mark.asyncio
    async def test_control_only_payload_refused(self, service, executor):
        with pytest.raises(ValueError):
            await service.deliver_literal("claude", "\x1b\x03")

        assert all("send-keys" not in call for call in executor.calls)

    @pytest.mark.asyncio
    async def test_invalid_target(self, service, executor):
        with pytest.raises(InvalidTargetError):
            await service.deliver_literal("$(id)", "Y")
        assert executor.calls == []


# =============================================================================
# list_sessions
# =============================================================================

class TestListSessions:
    """Session listing for the CLI."""

    @pytest.mark.asyncio
    async def test_parses_sessions(self, service, executor):
        executor.add_response(
            "list-sessions",
            stdout="$0:claude:2:1\n$1:my:odd:name:1:0\n",
        )

        sessions = await service.list_sessions()

        assert [(s.id, s.name, s.windows, s.attached) for s in sessions] == [
            ("$0", "claude", 2, True),
            ("$1", "my:odd:name", 1, False),
        ]

    @pytest.mark.asyncio
    async def test_no_server_is_empty(self, service, executor):
        executor.add_response(
            "list-sessions", stderr="no server running on /tmp/tmux-0/default", returncode=1
        )
        assert await service.list_sessions() == []

    @pytest.mark.asyncio
    async def test_other_errors_raise(self, service, executor):
        executor.add_response("list-sessions", stderr="permission denied", returncode=1)

        with pytest.raises(TmuxError):
            await service.list_sessions()


# =============================================================================
# AsyncCommandExecutor
# =============================================================================

class TestAsyncCommandExecutor:
    """Real subprocess execution."""

    @pytest.mark.asyncio
    async def test_runs_argv_without_shell(self):
        executor = AsyncCommandExecutor()

        stdout, _, returncode = await executor.run(
            sys.executable, "-c", "import sys; print(sys.argv[1])", "$(echo hi); ls"
        )

        assert returncode == 0
        assert stdout.decode().strip() == "$(echo hi); ls"

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_check(self):
        executor = AsyncCommandExecutor()

        with pytest.raises(TmuxError):
            await executor.run(sys.executable, "-c", "raise SystemExit(3)")

    @pytest.mark.asyncio
    async def test_non_zero_exit_returned_without_check(self):
        executor = AsyncCommandExecutor()

        _, _, returncode = await executor.run(
            sys.executable, "-c", "raise SystemExit(3)", check=False
        )

        assert returncode == 3

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        executor = AsyncCommandExecutor(timeout=0.2)

        with pytest.raises(TmuxError, match="timed out"):
            await executor.run(sys.executable, "-c", "import time; time.sleep(10)")

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        executor = AsyncCommandExecutor()

        with pytest.raises(TmuxError, match="Could not run"):
            await executor.run("/nonexistent/tmux-binary", "-V")
