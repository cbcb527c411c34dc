"""Relay agent prompts to a human operator over SMS or chat."""

__version__ = "0.1.0"
