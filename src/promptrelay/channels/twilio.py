"""Twilio Programmable SMS channel."""

import asyncio
import logging
from typing import Optional

import aiohttp

from promptrelay.errors import ChannelSendError

logger = logging.getLogger(__name__)

# Twilio splits anything longer into segments; it rejects beyond this
MAX_MESSAGE_LENGTH = 1600


class TwilioSmsChannel:
    """Sends SMS to the operator through the Twilio REST API.

    Inbound replies arrive on the daemon's /sms/inbound webhook, not here.
    Budgets are small and content is ASCII-only so a message fits in a
    few GSM segments.
    """

    name = "sms"
    max_context_chars = 450
    multi_context_chars = 300
    ascii_only = True

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        operator_number: Optional[str],
        api_base: str = "https://api.twilio.com",
        request_timeout: float = 5.0,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._operator_number = operator_number
        self._api_base = api_base.rstrip("/")
        self._request_timeout = request_timeout
        self._session = http_session
        self._owns_session = http_session is None

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *args):
        await self.close()

    @property
    def operator_id(self) -> Optional[str]:
        """The phone number replies are accepted from."""
        return self._operator_number

    @property
    def messages_url(self) -> str:
        return (
            f"{self._api_base}/2010-04-01/Accounts/"
            f"{self._account_sid}/Messages.json"
        )

    async def send(self, text: str) -> None:
        """Send an SMS to the operator.

        Raises:
            ChannelSendError: If credentials are missing or Twilio rejects
                the request.
        """
        if not (
            self._account_sid
            and self._auth_token
            and self._from_number
            and self._operator_number
        ):
            raise ChannelSendError("Twilio credentials not configured")

        if self._session is None:
            self._session = aiohttp.ClientSession()

        form = {
            "To": self._operator_number,
            "From": self._from_number,
            "Body": text[:MAX_MESSAGE_LENGTH],
        }

        try:
            async with self._session.post(
                self.messages_url,
                data=form,
                auth=aiohttp.BasicAuth(self._account_sid, self._auth_token),
                timeout=aiohttp.ClientTimeout(total=self._request_timeout),
            ) as resp:
                if resp.status not in (200, 201):
                    body = await resp.text()
                    raise ChannelSendError(
                        f"Twilio API error {resp.status}: {body[:100]}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChannelSendError(f"Twilio request failed: {e!r}") from e

        logger.info("SMS sent (%d chars)", len(text))

    async def close(self) -> None:
        """Close the HTTP session if owned."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None
