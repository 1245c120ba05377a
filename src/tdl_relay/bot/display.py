"""Telegram messages as the display surface of the task queue."""

from __future__ import annotations

import logging
from typing import Any

from tdl_relay.http.telegram import TelegramApiError, TelegramClient
from tdl_relay.orchestrator.models import Controls, DisplayRef

logger = logging.getLogger(__name__)


def inline_keyboard(controls: Controls) -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [{"text": button.label, "callback_data": button.payload} for button in row]
            for row in controls.rows
        ],
    }


class TelegramDisplay:
    """`DisplaySurface` backed by Bot API messages; failures are logged, never raised."""

    def __init__(self, client: TelegramClient) -> None:
        self.client = client

    def send(
        self,
        chat_id: int,
        text: str,
        controls: Controls | None = None,
        reply_to: int | None = None,
    ) -> DisplayRef | None:
        try:
            message = self.client.send_message(
                chat_id,
                text,
                reply_markup=inline_keyboard(controls) if controls is not None else None,
                reply_to_message_id=reply_to,
            )
        except TelegramApiError as error:
            logger.warning("Failed to send message to chat %s: %s", chat_id, error)
            return None
        return DisplayRef(chat_id=chat_id, message_id=int(message["message_id"]))

    def edit(self, ref: DisplayRef, text: str, controls: Controls | None = None) -> bool:
        try:
            self.client.edit_message_text(
                ref.chat_id,
                ref.message_id,
                text,
                reply_markup=inline_keyboard(controls) if controls is not None else None,
            )
        except TelegramApiError as error:
            logger.warning("Failed to edit message %s/%s: %s", ref.chat_id, ref.message_id, error)
            return False
        return True

    def delete(self, ref: DisplayRef) -> bool:
        try:
            self.client.delete_message(ref.chat_id, ref.message_id)
        except TelegramApiError as error:
            logger.warning("Failed to delete message %s/%s: %s", ref.chat_id, ref.message_id, error)
            return False
        return True
