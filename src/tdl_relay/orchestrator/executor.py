"""Task executor: runs one queued item through the runner and reports its outcome."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from tdl_relay import texts
from tdl_relay.orchestrator.backend.base import ProcessRunner, RunnerHandle, RunnerStartError
from tdl_relay.orchestrator.classifier import LineKind, classify_line
from tdl_relay.orchestrator.display import DisplayAggregator
from tdl_relay.orchestrator.models import QueuedItem, Task, TaskOutcome, TaskStatus
from tdl_relay.orchestrator.registry import TaskRegistry

logger = logging.getLogger(__name__)

DEFAULT_TASK_TIMEOUT_SECONDS = 300.0
DEFAULT_CLEANUP_GRACE_SECONDS = 0.8
DEFAULT_STATUS_THROTTLE_SECONDS = 1.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.2

_STREAM_CLOSED = object()
_STREAM_FAILED = object()


@dataclass(slots=True)
class _RunState:
    last_push: float
    last_status: str = ""
    unpushed_status: str | None = None
    qr_seen: bool = False
    login_links: set[str] = field(default_factory=set)


class TaskExecutor:
    """Drives `starting -> running -> terminal` for one item at a time."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: TaskRegistry,
        runner: ProcessRunner,
        aggregator: DisplayAggregator,
        task_timeout_seconds: float = DEFAULT_TASK_TIMEOUT_SECONDS,
        cleanup_grace_seconds: float = DEFAULT_CLEANUP_GRACE_SECONDS,
        status_throttle_seconds: float = DEFAULT_STATUS_THROTTLE_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.runner = runner
        self.aggregator = aggregator
        self.task_timeout_seconds = task_timeout_seconds
        self.cleanup_grace_seconds = cleanup_grace_seconds
        self.status_throttle_seconds = status_throttle_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock

    def execute(self, item: QueuedItem) -> TaskOutcome:
        """Run the item to a terminal state and render its final line."""

        task = Task(task_id=item.task_id, user_id=item.user_id, display=item.display)
        self.registry.register_task(task)
        self.registry.set_current(task)
        try:
            if item.cancelled:
                outcome = _cancelled(item)
            else:
                outcome = self._run(item, task)
        finally:
            self.registry.unregister_task(item.user_id, item.task_id)
            self.registry.set_current(None)

        logger.info(
            "Task #%d of user %d finished: %s",
            item.task_id,
            item.user_id,
            outcome.status.value,
        )
        self.aggregator.finish_row(item, outcome.summary)
        return outcome

    def _run(self, item: QueuedItem, task: Task) -> TaskOutcome:
        deadline = self._clock() + self.task_timeout_seconds
        try:
            handle = self.runner.start(item.target, lock_token=item.lock_token, deadline=deadline)
        except RunnerStartError as error:
            logger.warning(
                "Task #%d of user %d failed to start: %s",
                item.task_id,
                item.user_id,
                error,
            )
            return TaskOutcome(status=TaskStatus.FAILED, summary=texts.start_failed(item.task_id))

        pgid = handle.resolve_pgid()
        if not self.registry.attach_process(item.user_id, item.task_id, handle, pgid):
            self._cleanup(handle)
            return _cancelled(item)

        state = _RunState(last_push=self._clock())
        lines: queue.Queue[object] = queue.Queue()
        reader = threading.Thread(
            target=_pump_lines,
            args=(handle, lines),
            daemon=True,
            name=f"tdl-relay-reader-{item.lock_token}",
        )
        reader.start()

        stream_failed = False
        while True:
            if task.cancelled or not self.registry.is_active(item.user_id, item.task_id):
                logger.info(
                    "Task #%d of user %d stopped by cancellation",
                    item.task_id,
                    item.user_id,
                )
                return _cancelled(item)
            remaining = deadline - self._clock()
            if remaining <= 0:
                return self._time_out(item, handle)
            try:
                entry = lines.get(timeout=min(self.poll_interval_seconds, remaining))
            except queue.Empty:
                self._flush_status(item, state)
                continue
            if entry is _STREAM_CLOSED:
                break
            if entry is _STREAM_FAILED:
                stream_failed = True
                continue
            self._handle_line(item, str(entry), state)

        try:
            exit_code = handle.wait()
        except TimeoutError:
            return self._time_out(item, handle)
        self._cleanup(handle)

        if task.cancelled:
            return _cancelled(item)
        if self._clock() >= deadline:
            return TaskOutcome(status=TaskStatus.TIMED_OUT, summary=texts.timed_out(item.task_id))
        if stream_failed or exit_code:
            return TaskOutcome(
                status=TaskStatus.FAILED,
                summary=texts.execution_failed(item.task_id),
                exit_code=exit_code,
            )
        summary = state.last_status or texts.completed(item.task_id)
        return TaskOutcome(status=TaskStatus.SUCCEEDED, summary=summary, exit_code=exit_code)

    def _handle_line(self, item: QueuedItem, line: str, state: _RunState) -> None:
        event = classify_line(line, qr_seen=state.qr_seen)
        if event is None:
            return
        if event.kind is LineKind.LOGIN_CONSOLE:
            state.qr_seen = True
            logger.info("Task #%d needs console login", item.task_id)
            self.aggregator.show_notice(item, texts.login_console(item.task_id))
        elif event.kind is LineKind.LOGIN_LINK:
            if event.payload and event.payload not in state.login_links:
                state.login_links.add(event.payload)
                logger.info("Task #%d needs login via link", item.task_id)
                self.aggregator.show_notice(item, texts.login_link(item.task_id, event.payload))
        elif event.kind is LineKind.STATUS:
            state.last_status = event.payload
            state.unpushed_status = event.payload
            self._flush_status(item, state)
        else:
            logger.debug("[task #%d] %s", item.task_id, event.payload)

    def _flush_status(self, item: QueuedItem, state: _RunState) -> None:
        if state.unpushed_status is None:
            return
        now = self._clock()
        if now - state.last_push < self.status_throttle_seconds:
            return
        self.aggregator.update_row(item, state.unpushed_status)
        state.unpushed_status = None
        state.last_push = now

    def _time_out(self, item: QueuedItem, handle: RunnerHandle) -> TaskOutcome:
        logger.warning(
            "Task #%d of user %d exceeded %.0fs, killing runner",
            item.task_id,
            item.user_id,
            self.task_timeout_seconds,
        )
        self._cleanup(handle)
        return TaskOutcome(status=TaskStatus.TIMED_OUT, summary=texts.timed_out(item.task_id))

    def _cleanup(self, handle: RunnerHandle) -> None:
        """Best-effort teardown of whatever the runner left in its group."""

        pgid = handle.pgid or handle.resolve_pgid()
        if pgid > 0:
            handle.kill_group(pgid, grace_seconds=self.cleanup_grace_seconds)
        else:
            handle.kill()


def _cancelled(item: QueuedItem) -> TaskOutcome:
    return TaskOutcome(status=TaskStatus.CANCELLED, summary=texts.terminated_by_user(item.task_id))


def _pump_lines(handle: RunnerHandle, sink: queue.Queue[object]) -> None:
    try:
        for line in handle.iter_lines():
            sink.put(line)
    except (OSError, ValueError) as error:
        logger.warning("Runner output stream of pid=%s failed: %s", handle.pid, error)
        sink.put(_STREAM_FAILED)
    finally:
        sink.put(_STREAM_CLOSED)
