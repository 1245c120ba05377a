"""Client for the subscription service's `config/add` endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_SUCCESS_MESSAGE = "Subscription added"
_DUPLICATE_MARKERS = ("already exists", "已存在")


@dataclass(slots=True)
class SubscriptionResult:
    """Outcome of one subscription request, `message` ready to show to the user."""

    ok: bool
    message: str


class SubscriptionClient:
    """POSTs subscription URLs to `http://<host>/api/config/add`."""

    def __init__(
        self,
        *,
        api_host: str,
        api_key: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_host = api_host
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"X-API-Key": api_key},
            transport=transport,
        )

    @property
    def endpoint(self) -> str:
        return f"http://{self.api_host}/api/config/add"

    def add(self, sub_url: str) -> SubscriptionResult:
        logger.info("Sending subscription request to %s", self.endpoint)
        try:
            response = self._client.post(self.endpoint, json={"sub_url": sub_url})
        except httpx.TimeoutException:
            logger.warning("Subscription request to %s timed out", self.endpoint)
            return SubscriptionResult(ok=False, message="❌ Request timed out, try again later")
        except httpx.HTTPError as exc:
            logger.warning("Subscription request to %s failed: %s", self.endpoint, exc)
            return SubscriptionResult(ok=False, message="❌ Cannot connect to the server")

        try:
            body = response.json()
        except ValueError:
            logger.warning("Unparsable subscription response (HTTP %s)", response.status_code)
            return SubscriptionResult(
                ok=False,
                message=f"❌ Failed to add subscription (status code: {response.status_code})",
            )
        if not isinstance(body, dict):
            body = {}

        if response.status_code == httpx.codes.OK:
            message = str(body.get("message") or DEFAULT_SUCCESS_MESSAGE)
            logger.info("Subscription added: %s - %s", sub_url, message)
            return SubscriptionResult(ok=True, message=f"✅ {message}")

        error = str(
            body.get("error")
            or body.get("message")
            or f"Failed to add subscription (status code: {response.status_code})",
        )
        logger.warning("Subscription rejected: %s", error)
        if any(marker in error.lower() for marker in _DUPLICATE_MARKERS):
            return SubscriptionResult(ok=False, message=f"⚠️ {error}")
        return SubscriptionResult(ok=False, message=f"❌ {error}")

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SubscriptionClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
