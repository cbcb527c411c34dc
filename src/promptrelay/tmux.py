"""tmux service: the only code that touches terminal sessions.

All commands are run from an argument vector, never through a shell, and
every target name is checked against the allow-list before it reaches tmux.
"""

import asyncio
import logging
from typing import Optional

from promptrelay.errors import TargetNotFoundError, TmuxError
from promptrelay.protocols import CommandExecutorProtocol, TmuxSessionInfo
from promptrelay.validation import ensure_valid_target, sanitize_payload

logger = logging.getLogger(__name__)


class AsyncCommandExecutor:
    """Execute commands asynchronously with a bounded wait."""

    def __init__(self, timeout: float = 5.0):
        """Initialize executor.

        Args:
            timeout: Seconds to wait for a command before killing it.
        """
        self._timeout = timeout

    async def run(
        self, *args: str, check: bool = True
    ) -> tuple[bytes, bytes, int]:
        """Run command and return (stdout, stderr, returncode).

        Args:
            *args: Command and arguments to run.
            check: If True, raise TmuxError on non-zero exit.

        Returns:
            Tuple of (stdout, stderr, returncode).

        Raises:
            TmuxError: If the command cannot start, times out, or (with
                check=True) exits non-zero.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TmuxError(f"Could not run {args[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise TmuxError(
                f"Command timed out after {self._timeout}s: {' '.join(args[:2])}"
            )

        returncode = proc.returncode or 0

        if check and returncode != 0:
            raise TmuxError(f"Command failed: {stderr.decode(errors='replace')}")

        return stdout, stderr, returncode


class TmuxService:
    """Safe relay client backed by tmux.

    Stateless wrapper around the tmux CLI. Inject the command executor to
    test without a tmux server.
    """

    def __init__(
        self,
        executor: Optional[CommandExecutorProtocol] = None,
        tmux_path: str = "tmux",
        socket_path: Optional[str] = None,
        timeout: float = 5.0,
    ):
        """Initialize TmuxService.

        Args:
            executor: Command executor for running tmux. Defaults to
                AsyncCommandExecutor with the given timeout.
            tmux_path: Path to tmux binary.
            socket_path: Path to tmux socket for an isolated server.
            timeout: Per-command timeout for the default executor.
        """
        self._executor = executor or AsyncCommandExecutor(timeout=timeout)
        self._tmux_path = tmux_path
        self._socket_path = socket_path

    async def _run(
        self, *args: str, check: bool = True
    ) -> tuple[bytes, bytes, int]:
        if self._socket_path:
            full_args = (self._tmux_path, "-S", self._socket_path, *args)
        else:
            full_args = (self._tmux_path, *args)
        return await self._executor.run(*full_args, check=check)

    async def exists(self, target: str) -> bool:
        """Check if a tmux session exists.

        Uses the "=" prefix so "proj" never matches a session "proj-a".

        Args:
            target: tmux session name.

        Returns:
            True if session exists, False if has-session reports it missing.

        Raises:
            InvalidTargetError: If target fails validation.
            TmuxError: If tmux could not be run or timed out.
        """
        ensure_valid_target(target)

        _, _, returncode = await self._run(
            "has-session", "-t", f"={target}", check=False
        )
        return returncode == 0

    async def capture_tail(self, target: str, lines: int = 8) -> str:
        """Capture the last lines of a pane.

        Args:
            target: tmux session name.
            lines: Number of lines to capture from history.

        Returns:
            Raw pane content including escape codes.

        Raises:
            InvalidTargetError: If target fails validation.
            TargetNotFoundError: If the session does not exist.
            TmuxError: If capture fails.
        """
        ensure_valid_target(target)

        if not await self.exists(target):
            raise TargetNotFoundError(target)

        stdout, _, _ = await self._run(
            "capture-pane",
            "-p",  # Print to stdout
            "-t",
            f"={target}:",
            "-S",
            f"-{max(1, int(lines))}",  # Start line (negative = from history)
        )

        return stdout.decode("utf-8", errors="replace")

    async def deliver_literal(self, target: str, text: str) -> None:
        """Type text into a session, then press Enter.

        The payload goes through send-keys -l so tmux never interprets it
        as key names, and Enter is sent as its own command so no payload
        can carry an extra submission.

        Args:
            target: tmux session name.
            text: Reply text.

        Raises:
            InvalidTargetError: If target fails validation.
            TargetNotFoundError: If the session does not exist.
            TmuxError: If send-keys fails.
            ValueError: If the sanitised payload is empty.
        """
        ensure_valid_target(target)

        if not await self.exists(target):
            raise TargetNotFoundError(target)

        payload = sanitize_payload(text)
        if not payload.strip():
            raise ValueError("Refusing to deliver an empty payload")

        await self._run("send-keys", "-t", f"={target}:", "-l", "--", payload)
        await self._run("send-keys", "-t", f"={target}:", "Enter")

    async def list_sessions(self) -> list[TmuxSessionInfo]:
        """List all tmux sessions.

        Returns:
            List of TmuxSessionInfo objects. Empty if no server is running.
        """
        format_str = "#{session_id}:#{session_name}:#{session_windows}:#{session_attached}"

        stdout, stderr, returncode = await self._run(
            "list-sessions", "-F", format_str, check=False
        )

        # No server or no sessions is not an error
        if returncode != 0:
            stderr_str = stderr.decode(errors="replace")
            if any(
                msg in stderr_str
                for msg in ["no server", "no sessions", "error connecting"]
            ):
                return []
            raise TmuxError(f"list-sessions failed: {stderr_str}")

        sessions = []
        for line in stdout.decode(errors="replace").strip().split("\n"):
            if ":" not in line:
                continue
            # Session names may contain ":", so split from both ends
            session_id, rest = line.split(":", 1)
            parts = rest.rsplit(":", 2)
            if len(parts) == 3:
                sessions.append(
                    TmuxSessionInfo(
                        id=session_id,
                        name=parts[0],
                        windows=int(parts[1]),
                        attached=parts[2] != "0",
                    )
                )

        return sessions
