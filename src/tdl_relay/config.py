"""Runtime configuration for the relay bot, the runner script and the task queue."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_SCRIPT_NAME = "tdl.sh"
DEFAULT_API_BASE_URL = "https://api.telegram.org"


@dataclass(slots=True)
class TelegramSettings:
    """Bot API credentials and long-poll behaviour."""

    bot_token: str = ""
    allowed_users: frozenset[int] | None = None
    api_base_url: str = DEFAULT_API_BASE_URL
    poll_timeout_seconds: int = 30
    request_timeout_seconds: float = 15.0
    handler_threads: int = 8

    def is_allowed(self, user_id: int) -> bool:
        """Open mode when no allow-list is configured."""

        if self.allowed_users is None:
            return True
        return user_id in self.allowed_users


@dataclass(slots=True)
class RunnerSettings:
    """External runner script settings."""

    script_path: Path = Path(DEFAULT_SCRIPT_NAME)
    interpreter: str = "bash"
    task_timeout_seconds: float = 300.0
    kill_grace_seconds: float = 0.5
    cleanup_grace_seconds: float = 0.8


@dataclass(slots=True)
class QueueSettings:
    """Serial queue limits."""

    capacity: int = 100
    enqueue_timeout_seconds: float | None = 5.0
    status_throttle_seconds: float = 1.0


@dataclass(slots=True)
class SubscriptionSettings:
    """Subscription API endpoint used for non-Telegram links."""

    api_host: str = ""
    api_key: str = ""
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    telegram: TelegramSettings = field(default_factory=TelegramSettings)
    runner: RunnerSettings = field(default_factory=RunnerSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    subscription: SubscriptionSettings = field(default_factory=SubscriptionSettings)

    @classmethod
    def from_env(cls, script_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            telegram=TelegramSettings(
                bot_token=os.getenv("TDL_RELAY_BOT_TOKEN", "").strip(),
                allowed_users=_collect_allowed_users(),
                api_base_url=os.getenv("TDL_RELAY_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip(
                    "/",
                ),
                poll_timeout_seconds=int(os.getenv("TDL_RELAY_POLL_TIMEOUT_SECONDS", "30")),
                request_timeout_seconds=float(
                    os.getenv("TDL_RELAY_REQUEST_TIMEOUT_SECONDS", "15.0"),
                ),
                handler_threads=int(os.getenv("TDL_RELAY_HANDLER_THREADS", "8")),
            ),
            runner=RunnerSettings(
                script_path=script_path or resolve_script_path(),
                interpreter=os.getenv("TDL_RELAY_INTERPRETER", "bash").strip() or "bash",
                task_timeout_seconds=float(os.getenv("TDL_RELAY_TASK_TIMEOUT_SECONDS", "300")),
                kill_grace_seconds=float(os.getenv("TDL_RELAY_KILL_GRACE_SECONDS", "0.5")),
                cleanup_grace_seconds=float(
                    os.getenv("TDL_RELAY_CLEANUP_GRACE_SECONDS", "0.8"),
                ),
            ),
            queue=QueueSettings(
                capacity=int(os.getenv("TDL_RELAY_QUEUE_CAPACITY", "100")),
                enqueue_timeout_seconds=_env_optional_float(
                    "TDL_RELAY_ENQUEUE_TIMEOUT_SECONDS",
                    default=5.0,
                ),
                status_throttle_seconds=float(
                    os.getenv("TDL_RELAY_STATUS_THROTTLE_SECONDS", "1.0"),
                ),
            ),
            subscription=SubscriptionSettings(
                api_host=os.getenv("TDL_RELAY_SUBSCRIPTION_API_HOST", "").strip(),
                api_key=os.getenv("TDL_RELAY_SUBSCRIPTION_API_KEY", "").strip(),
                timeout_seconds=float(
                    os.getenv("TDL_RELAY_SUBSCRIPTION_TIMEOUT_SECONDS", "10.0"),
                ),
            ),
        )

    def validate_for_bot(self) -> None:
        """Raise configuration error if the bot cannot be started with these settings."""

        if not self.telegram.bot_token:
            raise ValueError("TDL_RELAY_BOT_TOKEN is required to run the bot.")
        if self.telegram.poll_timeout_seconds <= 0:
            raise ValueError("TDL_RELAY_POLL_TIMEOUT_SECONDS must be > 0.")
        if self.telegram.handler_threads <= 0:
            raise ValueError("TDL_RELAY_HANDLER_THREADS must be > 0.")
        _validate_http_url(self.telegram.api_base_url, name="TDL_RELAY_API_BASE_URL")
        self.validate_for_runner()

    def validate_for_runner(self) -> None:
        """Raise configuration error if tasks cannot be executed with these settings."""

        if self.runner.task_timeout_seconds <= 0:
            raise ValueError("TDL_RELAY_TASK_TIMEOUT_SECONDS must be > 0.")
        if self.runner.kill_grace_seconds < 0:
            raise ValueError("TDL_RELAY_KILL_GRACE_SECONDS must be >= 0.")
        if self.runner.cleanup_grace_seconds < 0:
            raise ValueError("TDL_RELAY_CLEANUP_GRACE_SECONDS must be >= 0.")
        if self.queue.capacity <= 0:
            raise ValueError("TDL_RELAY_QUEUE_CAPACITY must be a positive integer.")
        enqueue_timeout = self.queue.enqueue_timeout_seconds
        if enqueue_timeout is not None and enqueue_timeout < 0:
            raise ValueError("TDL_RELAY_ENQUEUE_TIMEOUT_SECONDS must be >= 0.")
        if self.queue.status_throttle_seconds < 0:
            raise ValueError("TDL_RELAY_STATUS_THROTTLE_SECONDS must be >= 0.")


def resolve_script_path() -> Path:
    """Locate the runner script: env override, next to the executable, then the cwd."""

    configured = os.getenv("TDL_RELAY_SCRIPT_PATH", "").strip()
    if configured:
        return Path(configured)

    cwd_candidate = Path.cwd() / DEFAULT_SCRIPT_NAME
    executable = Path(sys.argv[0]).resolve() if sys.argv and sys.argv[0] else None
    if executable is not None:
        exe_candidate = executable.parent / DEFAULT_SCRIPT_NAME
        if exe_candidate.is_file():
            return exe_candidate
    return cwd_candidate


def _collect_allowed_users() -> frozenset[int] | None:
    raw = os.getenv("TDL_RELAY_ALLOWED_USERS", "").strip()
    if not raw:
        return None

    users: set[int] = set()
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        try:
            users.add(int(token))
        except ValueError as error:
            raise ValueError(
                f"Invalid TDL_RELAY_ALLOWED_USERS entry: {token!r}. Expected a numeric user id.",
            ) from error
    return frozenset(users)


def _validate_http_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_optional_float(name: str, default: float | None) -> float | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"", "none", "forever"}:
        return None
    try:
        return float(normalized)
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
