"""Telegram relay bot that runs tdl forwarding tasks one at a time."""

__version__ = "0.3.0"
