"""Main daemon orchestration - ties all components together."""

import asyncio
import logging
import shutil
import signal
from typing import Optional

from promptrelay.channels import TelegramPoller, build_channel
from promptrelay.config import CHANNEL_SMS, CHANNEL_TELEGRAM, Config
from promptrelay.dispatcher import NotificationDispatcher
from promptrelay.errors import RelayError
from promptrelay.protocols import MessageChannelProtocol, RelayClientProtocol
from promptrelay.registry import SessionRegistry
from promptrelay.router import ReplyRouter
from promptrelay.server import RelayServer
from promptrelay.tmux import TmuxService

logger = logging.getLogger(__name__)


class StartupError(RelayError):
    """Error during daemon startup."""

    pass


class Daemon:
    """Main daemon orchestrating all components.

    Responsibilities:
    - Validate environment (tmux installed, operator configured)
    - Serve hook events and inbound SMS over HTTP
    - Poll Telegram for replies (telegram channel)
    - Handle graceful shutdown
    """

    def __init__(
        self,
        config: Config,
        channel: Optional[MessageChannelProtocol] = None,
        tmux: Optional[RelayClientProtocol] = None,
    ):
        """Initialize daemon.

        Args:
            config: Daemon configuration.
            channel: Optional injected channel (for testing).
            tmux: Optional injected relay client (for testing).
        """
        self._config = config
        self._running = False
        self._tmux_injected = tmux is not None

        self.registry = SessionRegistry(throttle_seconds=config.relay.throttle_seconds)
        self.tmux = tmux or TmuxService(
            tmux_path=config.relay.tmux_path,
            timeout=config.relay.command_timeout,
        )
        self.channel = channel or build_channel(config)

        self.router = ReplyRouter(
            self.registry,
            self.tmux,
            self.channel,
            fallback_target=config.relay.fallback_target,
        )
        self.dispatcher = NotificationDispatcher(
            self.registry,
            self.tmux,
            self.channel,
            capture_lines=config.relay.capture_lines,
        )
        self.server = RelayServer(
            self.registry,
            self.dispatcher,
            self.router,
            auth_token=config.auth_token,
            twilio=config.twilio if config.channel == CHANNEL_SMS else None,
        )

        self.poller: Optional[TelegramPoller] = None
        if config.channel == CHANNEL_TELEGRAM:
            self.poller = TelegramPoller(
                self.channel,  # type: ignore[arg-type]
                self.router,
                chat_id=config.telegram.chat_id,
                poll_timeout=config.telegram.poll_timeout,
            )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the daemon.

        Raises:
            StartupError: If environment validation fails.
        """
        logger.info("Starting daemon (channel: %s)...", self._config.channel)

        self._validate_environment()

        await self.server.start(self._config.bind_address, self._config.port)

        if self.poller:
            await self.poller.start()

        self._setup_signals()

        self._running = True
        logger.info("Daemon started successfully")

    async def run_forever(self) -> None:
        """Run daemon until shutdown signal."""
        if not self._running:
            await self.start()

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        self._running = False

    def get_port(self) -> int:
        """Get the port the HTTP server is listening on."""
        return self.server.get_port()

    def _validate_environment(self) -> None:
        """Validate required tools and settings."""
        if not self._config.operator_id:
            if self._config.channel == CHANNEL_SMS:
                raise StartupError("twilio.operator_number is not configured")
            raise StartupError("telegram.chat_id is not configured")

        if not self._config.auth_token:
            logger.warning("auth_token not configured; /api/notify will reject all events")

        if not self._tmux_injected and shutil.which(self._config.relay.tmux_path) is None:
            raise StartupError("tmux not found - please install tmux")

        logger.debug("Environment validated")

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig,
                    lambda: asyncio.create_task(self.stop()),
                )
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                logger.debug("Cannot install handler for %s", sig)

    async def _shutdown(self) -> None:
        """Perform graceful shutdown."""
        logger.info("Shutting down daemon...")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

        if self.poller:
            await self.poller.stop()

        # Waits for in-flight dispatch tasks
        await self.server.close()

        await self.channel.close()

        logger.info("Daemon shutdown complete")
