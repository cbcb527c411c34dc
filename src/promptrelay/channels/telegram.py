"""Telegram Bot API channel."""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from promptrelay.errors import ChannelError, ChannelSendError

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than this
MAX_MESSAGE_LENGTH = 4096


class TelegramChannel:
    """Sends messages to, and long-polls replies from, one Telegram chat.

    Telegram handles Unicode natively, so context is not ASCII-stripped.
    """

    name = "telegram"
    max_context_chars = 4000
    multi_context_chars = 3000
    ascii_only = False

    def __init__(
        self,
        bot_token: Optional[str],
        chat_id: Optional[str],
        api_base: str = "https://api.telegram.org",
        request_timeout: float = 5.0,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize channel.

        Args:
            bot_token: Bot token from @BotFather.
            chat_id: Operator chat ID.
            api_base: Bot API server URL.
            request_timeout: Timeout for sendMessage in seconds.
            http_session: Optional aiohttp session (for testing).
        """
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._api_base = api_base.rstrip("/")
        self._request_timeout = request_timeout
        self._session = http_session
        self._owns_session = http_session is None

    async def __aenter__(self):
        """Enter async context, creating session if needed."""
        self._ensure_session()
        return self

    async def __aexit__(self, *args):
        """Exit async context, closing owned session."""
        await self.close()

    @property
    def operator_id(self) -> Optional[str]:
        """The chat ID replies are accepted from."""
        return self._chat_id

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    def _url(self, method: str) -> str:
        if not self._bot_token:
            raise ChannelError("Telegram bot token not configured")
        return f"{self._api_base}/bot{self._bot_token}/{method}"

    async def send(self, text: str) -> None:
        """Send a message to the operator chat.

        Args:
            text: Message text.

        Raises:
            ChannelSendError: If not configured or the API call fails.
        """
        if not self._chat_id:
            raise ChannelSendError("Telegram chat_id not configured")

        try:
            url = self._url("sendMessage")
        except ChannelError as e:
            raise ChannelSendError(str(e)) from e

        session = self._ensure_session()
        try:
            async with session.post(
                url,
                json={"chat_id": self._chat_id, "text": text[:MAX_MESSAGE_LENGTH]},
                timeout=aiohttp.ClientTimeout(total=self._request_timeout),
            ) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise ChannelSendError(
                        f"Telegram API error {resp.status}: {body[:100]}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChannelSendError(f"Telegram request failed: {e!r}") from e

        logger.info("Telegram message sent (%d chars)", len(text))

    async def get_updates(
        self, offset: Optional[int] = None, timeout: int = 30
    ) -> list[dict[str, Any]]:
        """Long-poll for new updates.

        Args:
            offset: Last seen update_id + 1 (acknowledges earlier updates).
            timeout: Long-poll wait in seconds (0 returns immediately).

        Returns:
            Update objects. Empty if the API answers with ok=false.

        Raises:
            ChannelError: On transport failure or non-200 status.
        """
        params: dict[str, Any] = {"timeout": timeout}
        if offset is not None:
            params["offset"] = offset

        session = self._ensure_session()
        try:
            async with session.get(
                self._url("getUpdates"),
                params=params,
                # Must outlast the long-poll wait
                timeout=aiohttp.ClientTimeout(total=timeout + 10),
            ) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise ChannelError(
                        f"getUpdates error {resp.status}: {body[:100]}"
                    )
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ChannelError(f"getUpdates failed: {e!r}") from e

        if not isinstance(data, dict) or not data.get("ok"):
            logger.warning("getUpdates returned ok=false")
            return []

        result = data.get("result")
        return result if isinstance(result, list) else []

    async def close(self) -> None:
        """Close the HTTP session if owned."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None
