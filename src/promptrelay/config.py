"""Configuration management for the prompt relay."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

CHANNEL_TELEGRAM = "telegram"
CHANNEL_SMS = "sms"


@dataclass
class TelegramConfig:
    """Telegram Bot API configuration."""

    bot_token: str | None = None
    chat_id: str | None = None  # Operator chat; everything else is dropped
    api_base: str = "https://api.telegram.org"
    poll_timeout: int = 30  # seconds (long-poll wait)
    request_timeout: float = 5.0  # seconds (sendMessage)


@dataclass
class TwilioConfig:
    """Twilio Programmable SMS configuration."""

    account_sid: str | None = None
    auth_token: str | None = None
    from_number: str | None = None
    operator_number: str | None = None  # E.164, the only accepted sender
    webhook_url: str | None = None  # Public URL Twilio signs requests with
    api_base: str = "https://api.twilio.com"
    request_timeout: float = 5.0


@dataclass
class RelayConfig:
    """Session relay behaviour."""

    fallback_target: str | None = None  # Used only when no session is registered
    capture_lines: int = 8
    throttle_seconds: float = 5.0
    command_timeout: float = 5.0  # Bound on every tmux invocation
    tmux_path: str = "tmux"


@dataclass
class Config:
    """Daemon configuration."""

    port: int = 3000
    bind_address: str = "127.0.0.1"
    auth_token: str | None = None
    channel: str = CHANNEL_TELEGRAM
    log_level: str = "INFO"
    log_file: str | None = None
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)

    @property
    def operator_id(self) -> str | None:
        """Identity of the single operator for the active channel."""
        if self.channel == CHANNEL_SMS:
            return self.twilio.operator_number
        return self.telegram.chat_id


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "promptrelay" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def _optional_str(value: Any) -> str | None:
    # Chat ids and phone numbers are often written unquoted in YAML
    if value is None:
        return None
    return str(value)


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if not isinstance(data, dict):
        return Config()

    telegram_data = data.get("telegram") or {}
    telegram_config = TelegramConfig(
        bot_token=_optional_str(telegram_data.get("bot_token")),
        chat_id=_optional_str(telegram_data.get("chat_id")),
        api_base=telegram_data.get("api_base", TelegramConfig.api_base),
        poll_timeout=telegram_data.get("poll_timeout", TelegramConfig.poll_timeout),
        request_timeout=telegram_data.get(
            "request_timeout", TelegramConfig.request_timeout
        ),
    )

    twilio_data = data.get("twilio") or {}
    twilio_config = TwilioConfig(
        account_sid=_optional_str(twilio_data.get("account_sid")),
        auth_token=_optional_str(twilio_data.get("auth_token")),
        from_number=_optional_str(twilio_data.get("from_number")),
        operator_number=_optional_str(twilio_data.get("operator_number")),
        webhook_url=twilio_data.get("webhook_url"),
        api_base=twilio_data.get("api_base", TwilioConfig.api_base),
        request_timeout=twilio_data.get(
            "request_timeout", TwilioConfig.request_timeout
        ),
    )

    relay_data = data.get("relay") or {}
    relay_config = RelayConfig(
        fallback_target=_optional_str(relay_data.get("fallback_target")),
        capture_lines=relay_data.get("capture_lines", RelayConfig.capture_lines),
        throttle_seconds=relay_data.get(
            "throttle_seconds", RelayConfig.throttle_seconds
        ),
        command_timeout=relay_data.get(
            "command_timeout", RelayConfig.command_timeout
        ),
        tmux_path=relay_data.get("tmux_path", RelayConfig.tmux_path),
    )

    return Config(
        port=data.get("port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        auth_token=_optional_str(data.get("auth_token")),
        channel=str(data.get("channel", Config.channel)).lower(),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        telegram=telegram_config,
        twilio=twilio_config,
        relay=relay_config,
    )
