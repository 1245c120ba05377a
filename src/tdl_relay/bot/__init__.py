"""Telegram front-end: update parsing, message handlers and the long-poll service."""
