"""Long-poll loop feeding Telegram replies into the reply router."""

import asyncio
import logging
from typing import Any, Optional

from promptrelay.channels.telegram import TelegramChannel
from promptrelay.router import ReplyRouter

logger = logging.getLogger(__name__)


class TelegramPoller:
    """Polls getUpdates and routes each operator message.

    Features:
    - Stale updates queued while the daemon was down are skipped on start
    - Messages from any chat but the operator's are dropped
    - Exponential backoff on failures (1s doubling to 30s)
    """

    INITIAL_BACKOFF = 1.0  # seconds
    MAX_BACKOFF = 30.0  # seconds

    def __init__(
        self,
        channel: TelegramChannel,
        router: ReplyRouter,
        chat_id: Optional[str],
        poll_timeout: int = 30,
    ):
        """Initialize poller.

        Args:
            channel: Telegram channel used for getUpdates.
            router: Router each accepted message is handed to.
            chat_id: Operator chat ID; the only accepted sender.
            poll_timeout: Long-poll wait in seconds.
        """
        self._channel = channel
        self._router = router
        self._chat_id = str(chat_id) if chat_id is not None else None
        self._poll_timeout = poll_timeout
        self._offset: Optional[int] = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """True between start() and stop()."""
        return self._running

    @property
    def offset(self) -> Optional[int]:
        """Next update_id to request."""
        return self._offset

    async def start(self) -> None:
        """Start polling in the background. No-op if already running."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Telegram polling started")

    async def stop(self) -> None:
        """Stop polling.

        Waits for the in-flight poll to finish, bounded by the long-poll
        timeout plus a margin, then cancels it.
        """
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=self._poll_timeout + 10)
            except asyncio.TimeoutError:
                logger.warning("Telegram poll did not finish in time, cancelled")
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Telegram polling stopped")

    async def _run(self) -> None:
        await self._flush_stale()

        backoff = self.INITIAL_BACKOFF
        while self._running:
            try:
                updates = await self._channel.get_updates(
                    self._offset, self._poll_timeout
                )
            except Exception as e:
                if not self._running:
                    break
                logger.warning("Telegram poll failed: %s (retry in %.0fs)", e, backoff)
                await self._sleep(backoff)
                backoff = min(backoff * 2, self.MAX_BACKOFF)
                continue

            backoff = self.INITIAL_BACKOFF
            for update in updates:
                await self._handle_update(update)

    async def _flush_stale(self) -> None:
        """Skip everything queued while the daemon was down.

        getUpdates returns at most 100 updates per call, so keep asking
        until a batch comes back empty.
        """
        skipped = 0
        while self._running:
            try:
                updates = await self._channel.get_updates(self._offset, 0)
            except Exception as e:
                logger.warning("Could not flush stale updates: %s", e)
                break

            if not updates:
                break

            previous = self._offset
            for update in updates:
                self._advance(update)
            skipped += len(updates)

            # No usable update_id; asking again would return the same batch
            if self._offset == previous:
                break

        if skipped:
            logger.info("Skipped %d stale update(s)", skipped)

    async def _handle_update(self, update: dict[str, Any]) -> None:
        self._advance(update)

        message = update.get("message")
        if not isinstance(message, dict):
            return

        chat = message.get("chat") or {}
        chat_id = chat.get("id")
        if chat_id is None or str(chat_id) != self._chat_id:
            logger.warning("Ignoring message from unauthorized chat %s", chat_id)
            return

        text = message.get("text")
        if not isinstance(text, str):
            return

        try:
            await self._router.handle_reply(text)
        except Exception as e:
            logger.error("Error handling reply: %s", e)

    def _advance(self, update: dict[str, Any]) -> None:
        update_id = update.get("update_id")
        if isinstance(update_id, int):
            if self._offset is None or update_id + 1 > self._offset:
                self._offset = update_id + 1

    async def _sleep(self, seconds: float) -> None:
        """Sleep, returning early if stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
