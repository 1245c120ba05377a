"""Typed views over raw Bot API update payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    """Text message from a user."""

    update_id: int
    chat_id: int
    message_id: int
    user_id: int
    username: str
    first_name: str
    text: str

    @property
    def command(self) -> str | None:
        """Bot command without the slash and `@botname` suffix, if the text is one."""

        if not self.text.startswith("/"):
            return None
        head = self.text.split(maxsplit=1)[0]
        return head[1:].split("@", 1)[0].lower()


@dataclass(frozen=True, slots=True)
class CallbackQueryEvent:
    """Inline button press."""

    update_id: int
    callback_id: str
    user_id: int
    data: str
    chat_id: int | None = None
    message_id: int | None = None


Update = IncomingMessage | CallbackQueryEvent


def parse_update(raw: dict[str, Any]) -> Update | None:
    """Turn one `getUpdates` entry into a typed event; None for anything the bot ignores."""

    update_id = int(raw.get("update_id", 0))
    message = raw.get("message")
    if isinstance(message, dict):
        return _parse_message(update_id, message)
    callback = raw.get("callback_query")
    if isinstance(callback, dict):
        return _parse_callback(update_id, callback)
    return None


def _parse_message(update_id: int, message: dict[str, Any]) -> IncomingMessage | None:
    sender = message.get("from")
    chat = message.get("chat")
    text = message.get("text")
    if not isinstance(sender, dict) or not isinstance(chat, dict) or not isinstance(text, str):
        return None
    return IncomingMessage(
        update_id=update_id,
        chat_id=int(chat["id"]),
        message_id=int(message["message_id"]),
        user_id=int(sender["id"]),
        username=str(sender.get("username") or ""),
        first_name=str(sender.get("first_name") or ""),
        text=text,
    )


def _parse_callback(update_id: int, callback: dict[str, Any]) -> CallbackQueryEvent | None:
    sender = callback.get("from")
    if not isinstance(sender, dict):
        return None
    chat_id: int | None = None
    message_id: int | None = None
    message = callback.get("message")
    if isinstance(message, dict):
        chat = message.get("chat")
        if isinstance(chat, dict) and "id" in chat:
            chat_id = int(chat["id"])
        if "message_id" in message:
            message_id = int(message["message_id"])
    return CallbackQueryEvent(
        update_id=update_id,
        callback_id=str(callback.get("id", "")),
        user_id=int(sender["id"]),
        data=str(callback.get("data") or ""),
        chat_id=chat_id,
        message_id=message_id,
    )
