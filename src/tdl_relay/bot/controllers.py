"""Controllers for relay CLI commands."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from tdl_relay import texts
from tdl_relay.bot.service import RelayService
from tdl_relay.config import Settings
from tdl_relay.http.subscription import SubscriptionClient
from tdl_relay.http.telegram import TelegramClient
from tdl_relay.orchestrator.backend import ProcessRunner, ScriptRunner
from tdl_relay.orchestrator.display import DisplayAggregator, format_line
from tdl_relay.orchestrator.executor import TaskExecutor
from tdl_relay.orchestrator.models import Controls, DisplayRef, QueuedItem
from tdl_relay.orchestrator.registry import TaskRegistry
from tdl_relay.orchestrator.worker import QueueWorker

logger = logging.getLogger(__name__)

CONSOLE_USER_ID = 0


@dataclass(slots=True)
class RunBotCommand:
    """CLI input for the long-running bot."""

    script_path: Path | None


@dataclass(slots=True)
class StatusCommand:
    """CLI input for configuration inspection."""

    script_path: Path | None


@dataclass(slots=True)
class ExecCommand:
    """CLI input for a one-off run of the runner script."""

    target: str
    script_path: Path | None
    timeout_seconds: float | None = None


@dataclass(slots=True)
class ConsoleDisplay:
    """`DisplaySurface` that echoes every rendered body to the terminal."""

    emit: Callable[[str], None] | None = None
    history: list[str] = field(default_factory=list)
    _message_ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def send(
        self,
        chat_id: int,
        text: str,
        controls: Controls | None = None,
        reply_to: int | None = None,
    ) -> DisplayRef | None:
        self._show(text)
        return DisplayRef(chat_id=chat_id, message_id=next(self._message_ids))

    def edit(self, ref: DisplayRef, text: str, controls: Controls | None = None) -> bool:
        self._show(text)
        return True

    def delete(self, ref: DisplayRef) -> bool:
        return True

    def _show(self, text: str) -> None:
        self.history.append(text)
        if self.emit is not None:
            self.emit(text)


class RelayCliController:
    """Coordinates bot, status and one-off execution CLI operations."""

    def run_bot(self, command: RunBotCommand) -> list[str]:
        settings = Settings.from_env(script_path=command.script_path)
        settings.validate_for_bot()
        if not settings.runner.script_path.is_file():
            raise ValueError(f"Runner script not found: {settings.runner.script_path}")

        subscriptions = None
        if settings.subscription.api_host:
            subscriptions = SubscriptionClient(
                api_host=settings.subscription.api_host,
                api_key=settings.subscription.api_key,
                timeout_seconds=settings.subscription.timeout_seconds,
            )
        with TelegramClient(
            token=settings.telegram.bot_token,
            base_url=settings.telegram.api_base_url,
            timeout_seconds=settings.telegram.request_timeout_seconds,
        ) as client:
            service = RelayService(settings=settings, client=client, subscriptions=subscriptions)
            try:
                summary = service.run_forever()
            finally:
                if subscriptions is not None:
                    subscriptions.close()

        worker = summary.worker
        return [
            "Relay stopped: "
            f"updates={summary.updates} cancelled_on_stop={summary.cancelled_on_stop}",
            "Worker summary: "
            f"processed={worker.processed} skipped={worker.skipped} "
            f"succeeded={worker.succeeded} failed={worker.failed} "
            f"timeouts={worker.timeouts} cancelled={worker.cancelled}",
        ]

    def status(self, command: StatusCommand) -> list[str]:
        settings = Settings.from_env(script_path=command.script_path)
        script_path = settings.runner.script_path
        allowed = settings.telegram.allowed_users
        enqueue_timeout = settings.queue.enqueue_timeout_seconds
        return [
            f"Bot token: {'set' if settings.telegram.bot_token else 'missing'}",
            f"Allowed users: {', '.join(map(str, sorted(allowed))) if allowed else 'open mode'}",
            f"Runner script: {script_path} ({'found' if script_path.is_file() else 'missing'})",
            f"Interpreter: {settings.runner.interpreter}",
            f"Task timeout: {settings.runner.task_timeout_seconds:.0f}s",
            f"Queue capacity: {settings.queue.capacity}",
            "Enqueue timeout: "
            + ("forever" if enqueue_timeout is None else f"{enqueue_timeout:g}s"),
            f"Subscription API: {settings.subscription.api_host or 'not configured'}",
        ]

    def exec_target(
        self,
        command: ExecCommand,
        *,
        emit: Callable[[str], None] | None = None,
        runner: ProcessRunner | None = None,
    ) -> list[str]:
        """Run one target through the real queue worker, echoing display updates."""

        settings = Settings.from_env(script_path=command.script_path)
        if command.timeout_seconds is not None:
            settings.runner.task_timeout_seconds = command.timeout_seconds
        settings.validate_for_runner()

        registry = TaskRegistry(
            queue_capacity=1,
            kill_grace_seconds=settings.runner.kill_grace_seconds,
        )
        surface = ConsoleDisplay(emit=emit)
        aggregator = DisplayAggregator(registry=registry, surface=surface)
        executor = TaskExecutor(
            registry=registry,
            runner=runner
            or ScriptRunner(
                script_path=settings.runner.script_path,
                interpreter=settings.runner.interpreter,
            ),
            aggregator=aggregator,
            task_timeout_seconds=settings.runner.task_timeout_seconds,
            cleanup_grace_seconds=settings.runner.cleanup_grace_seconds,
            status_throttle_seconds=settings.queue.status_throttle_seconds,
        )
        worker = QueueWorker(registry=registry, executor=executor, aggregator=aggregator)

        item = QueuedItem(
            target=command.target,
            user_id=CONSOLE_USER_ID,
            task_id=registry.next_id(CONSOLE_USER_ID),
        )
        line = format_line(item, texts.queued(item.task_id, item.target, 1))
        item.display = surface.send(CONSOLE_USER_ID, line)
        if item.display is not None:
            registry.init_display(item.display, [line])
        outcome = worker.process_item(item)
        if outcome is None:
            return ["Task was cancelled before it started."]
        return [
            f"Outcome: status={outcome.status.value} exit_code={outcome.exit_code}",
            f"Summary: {outcome.summary}",
        ]
