"""CLI entry point for the prompt relay daemon."""

import json
import os
import sys
from pathlib import Path
from typing import Any, Mapping, Optional

import click

from promptrelay import __version__
from promptrelay.config import load_config
from promptrelay.logging import LOG_LEVELS, setup_logging

AUTH_TOKEN_ENV = "PROMPTRELAY_AUTH_TOKEN"
LOG_LEVEL_ENV = "PROMPTRELAY_LOG_LEVEL"

# Hook helper must never hold up the agent
NOTIFY_TIMEOUT = 5.0  # seconds


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    envvar=LOG_LEVEL_ENV,
    default=None,
    help=f"Override log_level from config (or ${LOG_LEVEL_ENV}).",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None, log_level: str | None) -> None:
    """Prompt relay - answer coding agent prompts from your phone."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"], level=log_level)


@main.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the daemon."""
    import asyncio

    from promptrelay.daemon import Daemon, StartupError
    from promptrelay.errors import ConfigError

    config = ctx.obj["config"]

    async def _start():
        try:
            daemon = Daemon(config=config)
        except ConfigError as e:
            click.echo(f"Config error: {e}", err=True)
            raise SystemExit(1)

        try:
            await daemon.start()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            await daemon.channel.close()
            raise SystemExit(1)

        click.echo(
            f"Daemon started on {config.bind_address}:{daemon.get_port()} "
            f"(channel: {config.channel})"
        )
        click.echo("Text ON to arm notifications. Press Ctrl+C to stop")
        await daemon.run_forever()

    try:
        asyncio.run(_start())
    except KeyboardInterrupt:
        pass


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"promptrelay version {__version__}")


@main.group()
def tmux() -> None:
    """tmux commands."""
    pass


@tmux.command("list")
@click.pass_context
def tmux_list(ctx: click.Context) -> None:
    """List tmux sessions and whether each can be a relay target."""
    import asyncio

    from promptrelay.errors import TmuxError
    from promptrelay.tmux import TmuxService
    from promptrelay.validation import validate_target

    relay = ctx.obj["config"].relay

    async def _list():
        service = TmuxService(tmux_path=relay.tmux_path, timeout=relay.command_timeout)
        try:
            sessions = await service.list_sessions()
        except TmuxError as e:
            click.echo(f"Error: {e}", err=True)
            return

        if not sessions:
            click.echo("No tmux sessions found.")
            return

        click.echo(f"{'ID':<6} {'Name':<20} {'Windows':<8} {'Attached':<9} {'Relay'}")
        click.echo("-" * 55)
        for s in sessions:
            attached = "yes" if s.attached else "no"
            relay_ok = "ok" if validate_target(s.name) is None else "invalid name"
            click.echo(f"{s.id:<6} {s.name:<20} {s.windows:<8} {attached:<9} {relay_ok}")

    asyncio.run(_list())


# =============================================================================
# Agent hook helper
# =============================================================================

def build_hook_payload(
    hook: Mapping[str, Any],
    tmux_session: Optional[str],
    env: Mapping[str, str],
    cwd: str,
) -> dict[str, Any]:
    """Build the /api/notify body from an agent hook's JSON.

    Args:
        hook: JSON the agent wrote to the hook's stdin (may be empty).
        tmux_session: tmux session the agent runs in, if known.
        env: Process environment.
        cwd: Current working directory.

    Returns:
        Payload with session_id, relay_target, display_name and message.
    """
    session_id = hook.get("session_id") or env.get("CLAUDE_SESSION_ID") or "default"
    project_dir = env.get("CLAUDE_PROJECT_DIR") or hook.get("cwd") or cwd
    display_name = Path(str(project_dir)).name or str(project_dir)

    message = hook.get("message")
    if not isinstance(message, str):
        message = ""

    return {
        "session_id": str(session_id),
        "relay_target": tmux_session or str(session_id),
        "display_name": display_name,
        "message": message,
    }


async def detect_tmux_session(
    env: Mapping[str, str], tmux_path: str = "tmux"
) -> Optional[str]:
    """Find the tmux session the hook runs in.

    Inside tmux ($TMUX set) asks tmux directly; otherwise uses the only
    running session, if there is exactly one.
    """
    from promptrelay.errors import TmuxError
    from promptrelay.tmux import AsyncCommandExecutor, TmuxService

    executor = AsyncCommandExecutor(timeout=2.0)

    if env.get("TMUX"):
        try:
            stdout, _, returncode = await executor.run(
                tmux_path, "display-message", "-p", "#S", check=False
            )
            name = stdout.decode(errors="replace").strip()
            if returncode == 0 and name:
                return name
        except TmuxError:
            pass

    try:
        sessions = await TmuxService(executor=executor, tmux_path=tmux_path).list_sessions()
    except TmuxError:
        return None

    if len(sessions) == 1:
        return sessions[0].name
    return None


@main.command()
@click.option(
    "--url",
    default=None,
    help="Daemon base URL (default: from config).",
)
@click.option(
    "--token",
    envvar=AUTH_TOKEN_ENV,
    default=None,
    help=f"Bearer token (default: ${AUTH_TOKEN_ENV}, then config).",
)
@click.pass_context
def notify(ctx: click.Context, url: str | None, token: str | None) -> None:
    """Forward an agent hook event (JSON on stdin) to the daemon.

    Always exits 0 so a stopped daemon never breaks the agent.
    """
    import asyncio

    import aiohttp

    config = ctx.obj["config"]
    base_url = url or f"http://{config.bind_address}:{config.port}"
    auth_token = token or config.auth_token

    raw = sys.stdin.read() if not sys.stdin.isatty() else ""
    try:
        hook = json.loads(raw) if raw.strip() else {}
    except ValueError:
        hook = {}
    if not isinstance(hook, dict):
        hook = {}

    async def _notify():
        tmux_session = await detect_tmux_session(os.environ, config.relay.tmux_path)
        payload = build_hook_payload(hook, tmux_session, os.environ, os.getcwd())

        headers = {}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{base_url.rstrip('/')}/api/notify",
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=NOTIFY_TIMEOUT),
            ) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    click.echo(f"Daemon returned {resp.status}: {body[:100]}", err=True)

    try:
        asyncio.run(_notify())
    except Exception as e:
        click.echo(f"Could not reach daemon: {e}", err=True)
