"""Operator messaging channels."""

from promptrelay.channels.poller import TelegramPoller
from promptrelay.channels.telegram import TelegramChannel
from promptrelay.channels.twilio import TwilioSmsChannel
from promptrelay.config import CHANNEL_SMS, CHANNEL_TELEGRAM, Config
from promptrelay.errors import ConfigError
from promptrelay.protocols import MessageChannelProtocol

__all__ = [
    "TelegramChannel",
    "TelegramPoller",
    "TwilioSmsChannel",
    "build_channel",
]


def build_channel(config: Config) -> MessageChannelProtocol:
    """Create the outbound channel selected by config.channel.

    Raises:
        ConfigError: If the channel name is unknown.
    """
    if config.channel == CHANNEL_TELEGRAM:
        tg = config.telegram
        return TelegramChannel(
            bot_token=tg.bot_token,
            chat_id=tg.chat_id,
            api_base=tg.api_base,
            request_timeout=tg.request_timeout,
        )

    if config.channel == CHANNEL_SMS:
        tw = config.twilio
        return TwilioSmsChannel(
            account_sid=tw.account_sid,
            auth_token=tw.auth_token,
            from_number=tw.from_number,
            operator_number=tw.operator_number,
            api_base=tw.api_base,
            request_timeout=tw.request_timeout,
        )

    raise ConfigError(
        f"Unknown channel {config.channel!r}; "
        f"expected {CHANNEL_TELEGRAM!r} or {CHANNEL_SMS!r}"
    )
