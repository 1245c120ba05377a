"""Single queue consumer: the only place tasks are started."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass

from tdl_relay import texts
from tdl_relay.orchestrator.display import DisplayAggregator
from tdl_relay.orchestrator.executor import TaskExecutor
from tdl_relay.orchestrator.models import QueuedItem, TaskOutcome, TaskStatus
from tdl_relay.orchestrator.registry import TaskRegistry

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 0.5


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for status reporting."""

    processed: int = 0
    skipped: int = 0
    succeeded: int = 0
    failed: int = 0
    timeouts: int = 0
    cancelled: int = 0

    def record(self, outcome: TaskOutcome) -> None:
        self.processed += 1
        if outcome.status is TaskStatus.SUCCEEDED:
            self.succeeded += 1
        elif outcome.status is TaskStatus.TIMED_OUT:
            self.timeouts += 1
        elif outcome.status is TaskStatus.CANCELLED:
            self.cancelled += 1
        else:
            self.failed += 1


class QueueWorker:
    """Drains the pending FIFO strictly in order, one task at a time."""

    def __init__(
        self,
        *,
        registry: TaskRegistry,
        executor: TaskExecutor,
        aggregator: DisplayAggregator,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.aggregator = aggregator
        self.poll_interval_seconds = poll_interval_seconds
        self.summary = WorkerRunSummary()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self.run, daemon=True, name="tdl-relay-worker")
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker to exit; True when it has stopped."""

        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> WorkerRunSummary:
        """Consume items until the queue is closed and drained."""

        logger.info("Queue worker started")
        while True:
            try:
                item = self.registry.next_item(timeout=self.poll_interval_seconds)
            except queue.Empty:
                if self.registry.closed:
                    break
                continue
            if item is None:
                break
            try:
                self.process_item(item)
            except Exception:
                logger.exception(
                    "Queue worker error on task #%d of user %d",
                    item.task_id,
                    item.user_id,
                )
        logger.info(
            "Queue worker stopped: processed=%d skipped=%d succeeded=%d failed=%d",
            self.summary.processed,
            self.summary.skipped,
            self.summary.succeeded,
            self.summary.failed,
        )
        return self.summary

    def process_item(self, item: QueuedItem) -> TaskOutcome | None:
        """Execute one dequeued item; None when it was cancelled while waiting."""

        try:
            if item.cancelled:
                logger.info("Skipping cancelled task #%d of user %d", item.task_id, item.user_id)
                self.summary.skipped += 1
                return None
            self.aggregator.update_row(item, texts.processing(item.task_id))
            outcome = self.executor.execute(item)
            self.summary.record(outcome)
            return outcome
        finally:
            self.registry.remove_queued_item(item.user_id, item.task_id)
