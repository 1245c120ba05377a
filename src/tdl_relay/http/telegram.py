"""Thin synchronous Telegram Bot API client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from tdl_relay.config import DEFAULT_API_BASE_URL

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
_NOT_MODIFIED = "message is not modified"


class TelegramApiError(RuntimeError):
    """Bot API call failed at the transport level or returned `ok: false`."""

    def __init__(self, method: str, description: str, *, error_code: int | None = None) -> None:
        super().__init__(f"Telegram API error ({method}): {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


class TelegramClient:
    """`httpx.Client` wrapper exposing the handful of Bot API methods the relay uses."""

    def __init__(
        self,
        *,
        token: str,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/bot{token}/",
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    def call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Any:
        """POST one Bot API method and return its `result` field."""

        timeout = httpx.USE_CLIENT_DEFAULT
        if timeout_seconds is not None:
            timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        try:
            response = self._client.post(method, json=payload or {}, timeout=timeout)
        except httpx.HTTPError as exc:
            raise TelegramApiError(method, str(exc) or type(exc).__name__) from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise TelegramApiError(
                method,
                f"invalid JSON (HTTP {response.status_code}): {response.text[:300]}",
                error_code=response.status_code,
            ) from exc
        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description", "") if isinstance(data, dict) else str(data)
            error_code = data.get("error_code") if isinstance(data, dict) else None
            raise TelegramApiError(
                method,
                description or f"HTTP {response.status_code}",
                error_code=error_code,
            )
        return data.get("result")

    def get_me(self) -> dict[str, Any]:
        return self.call("getMe")

    def get_updates(self, *, offset: int, timeout: int) -> list[dict[str, Any]]:
        """Long-poll for updates; the HTTP timeout outlasts the server-side wait."""

        result = self.call(
            "getUpdates",
            {
                "offset": offset,
                "timeout": timeout,
                "allowed_updates": ["message", "callback_query"],
            },
            timeout_seconds=timeout + self._timeout_seconds,
        )
        if not isinstance(result, list):
            return []
        return [update for update in result if isinstance(update, dict)]

    def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_markup: dict[str, Any] | None = None,
        reply_to_message_id: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
        return self.call("sendMessage", payload)

    def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        reply_markup: dict[str, Any] | None = None,
    ) -> None:
        """Replace a message body; an identical body is not an error."""

        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        try:
            self.call("editMessageText", payload)
        except TelegramApiError as error:
            if _NOT_MODIFIED in error.description.lower():
                logger.debug("Edit of %s/%s skipped: body unchanged", chat_id, message_id)
                return
            raise

    def delete_message(self, chat_id: int, message_id: int) -> None:
        self.call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    def answer_callback_query(
        self,
        callback_query_id: str,
        *,
        text: str = "",
        show_alert: bool = False,
    ) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        if show_alert:
            payload["show_alert"] = True
        self.call("answerCallbackQuery", payload)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TelegramClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
