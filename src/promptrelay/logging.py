"""Logging configuration for the prompt relay."""

import logging
from pathlib import Path

from promptrelay.config import Config

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Module-level logger cache
_logger: logging.Logger | None = None


def resolve_level(name: str | None) -> int:
    """Map a level name to a logging level, INFO if unknown."""
    if not name:
        return logging.INFO
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Config, level: str | None = None) -> logging.Logger:
    """Set up the promptrelay logger.

    Args:
        config: Configuration object with log settings.
        level: Overrides config.log_level (the CLI's --log-level).

    Returns:
        Configured package logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger("promptrelay")
    logger.setLevel(resolve_level(level or config.log_level))
    logger.handlers.clear()

    # 2026-01-27 10:30:45 [INFO] promptrelay.router: message
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    formatter.datefmt = "%Y-%m-%d %H:%M:%S"

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.propagate = False

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    if _logger is not None:
        _logger.handlers.clear()
        _logger.propagate = True
        _logger = None
