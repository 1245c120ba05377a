"""Relay service: owns the task registry, the queue worker and the long-poll loop."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass

from tdl_relay.bot.display import TelegramDisplay
from tdl_relay.bot.handlers import BotHandlers
from tdl_relay.bot.updates import Update, parse_update
from tdl_relay.config import Settings
from tdl_relay.http.subscription import SubscriptionClient
from tdl_relay.http.telegram import TelegramApiError, TelegramClient
from tdl_relay.orchestrator.backend import ProcessRunner, ScriptRunner
from tdl_relay.orchestrator.display import DisplayAggregator
from tdl_relay.orchestrator.executor import TaskExecutor
from tdl_relay.orchestrator.registry import TaskRegistry
from tdl_relay.orchestrator.worker import QueueWorker, WorkerRunSummary

logger = logging.getLogger(__name__)

POLL_ERROR_BACKOFF_SECONDS = 5.0
WORKER_JOIN_TIMEOUT_SECONDS = 10.0


@dataclass(slots=True)
class ServiceRunSummary:
    """Counters reported when the service stops."""

    updates: int
    cancelled_on_stop: int
    worker: WorkerRunSummary


class RelayService:
    """Wires the orchestration core to Telegram and drives it until stopped."""

    def __init__(
        self,
        *,
        settings: Settings,
        client: TelegramClient,
        runner: ProcessRunner | None = None,
        subscriptions: SubscriptionClient | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.registry = TaskRegistry(
            queue_capacity=settings.queue.capacity,
            kill_grace_seconds=settings.runner.kill_grace_seconds,
        )
        self.surface = TelegramDisplay(client)
        self.aggregator = DisplayAggregator(registry=self.registry, surface=self.surface)
        self.executor = TaskExecutor(
            registry=self.registry,
            runner=runner
            or ScriptRunner(
                script_path=settings.runner.script_path,
                interpreter=settings.runner.interpreter,
            ),
            aggregator=self.aggregator,
            task_timeout_seconds=settings.runner.task_timeout_seconds,
            cleanup_grace_seconds=settings.runner.cleanup_grace_seconds,
            status_throttle_seconds=settings.queue.status_throttle_seconds,
        )
        self.worker = QueueWorker(
            registry=self.registry,
            executor=self.executor,
            aggregator=self.aggregator,
        )
        self.handlers = BotHandlers(
            settings=settings,
            registry=self.registry,
            aggregator=self.aggregator,
            surface=self.surface,
            client=client,
            subscriptions=subscriptions,
        )
        self._offset = 0
        self._updates = 0
        self._cancelled_on_stop = 0
        self._stop_event = threading.Event()
        self._stop_signal_name: str | None = None
        self._pool: ThreadPoolExecutor | None = None

    def start(self) -> None:
        if self._pool is not None:
            return
        self.worker.start()
        self._pool = ThreadPoolExecutor(
            max_workers=self.settings.telegram.handler_threads,
            thread_name_prefix="tdl-relay-handler",
        )

    def run_forever(self) -> ServiceRunSummary:
        """Long-poll Telegram until SIGINT/SIGTERM or `request_stop()`."""

        me = self.client.get_me()
        logger.info("Authorized as @%s", me.get("username", "?"))
        with self._signal_handlers():
            self.start()
            try:
                while not self._stop_event.is_set():
                    try:
                        self.poll_once()
                    except TelegramApiError as error:
                        logger.warning("Polling failed: %s", error)
                        self._stop_event.wait(POLL_ERROR_BACKOFF_SECONDS)
            finally:
                self.stop()
        return self.summary()

    def poll_once(self) -> int:
        """Fetch one batch of updates and hand each to the handler pool."""

        raw_updates = self.client.get_updates(
            offset=self._offset,
            timeout=self.settings.telegram.poll_timeout_seconds,
        )
        for raw in raw_updates:
            update_id = int(raw.get("update_id", 0))
            self._offset = max(self._offset, update_id + 1)
            update = parse_update(raw)
            if update is None:
                continue
            self._updates += 1
            self.submit(update)
        return len(raw_updates)

    def submit(self, update: Update) -> None:
        if self._pool is None:
            self._handle(update)
            return
        self._pool.submit(self._handle, update)

    def request_stop(self, *, signal_name: str | None = None) -> None:
        self._stop_signal_name = signal_name
        self._stop_event.set()

    def stop(self) -> None:
        """Close the queue, kill whatever runs and wait for the worker to drain."""

        self._stop_event.set()
        logger.info("Stopping relay service (signal=%s)", self._stop_signal_name or "none")
        self.registry.close_queue()
        self._cancelled_on_stop = self.registry.cancel_all()
        if not self.worker.join(timeout=WORKER_JOIN_TIMEOUT_SECONDS):
            logger.warning("Queue worker did not stop within %.0fs", WORKER_JOIN_TIMEOUT_SECONDS)
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None

    def summary(self) -> ServiceRunSummary:
        return ServiceRunSummary(
            updates=self._updates,
            cancelled_on_stop=self._cancelled_on_stop,
            worker=self.worker.summary,
        )

    def _handle(self, update: Update) -> None:
        try:
            self.handlers.dispatch(update)
        except Exception:
            logger.exception("Update handler error (update_id=%s)", update.update_id)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        try:
            original_sigint = signal.signal(signal.SIGINT, _handler)
            original_sigterm = signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in the main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
