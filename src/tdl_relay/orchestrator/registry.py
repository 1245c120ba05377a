"""In-memory task registry: IDs, queued and active tasks, display caches.

All map-typed tables share one lock that is only ever held for dictionary
manipulation. Process teardown, display I/O and queue hand-off happen outside it.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tdl_relay.orchestrator.models import Controls, DisplayRef, QueuedItem, Task

if TYPE_CHECKING:
    from tdl_relay.orchestrator.backend.base import RunnerHandle

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_CAPACITY = 100
DEFAULT_KILL_GRACE_SECONDS = 0.5

_QUEUE_CLOSED = object()


class QueueFullError(RuntimeError):
    """Pending FIFO stayed saturated for the whole enqueue timeout."""


class QueueClosedError(RuntimeError):
    """Pending FIFO was closed by service shutdown."""


@dataclass(slots=True)
class _DisplayEntry:
    lines: list[str]
    controls: Controls | None
    pending: int | None
    resolved_rows: set[int] = field(default_factory=set)


class TaskRegistry:
    """Process-wide orchestration state with an explicit lifecycle."""

    def __init__(
        self,
        *,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self.queue_capacity = queue_capacity
        self.kill_grace_seconds = kill_grace_seconds
        self._lock = threading.Lock()
        self._counters: dict[int, int] = {}
        self._tasks: dict[int, dict[int, Task]] = {}
        self._queued: dict[int, dict[int, QueuedItem]] = {}
        self._current: Task | None = None
        self._displays: dict[DisplayRef, _DisplayEntry] = {}
        self._pending: queue.Queue[object] = queue.Queue(maxsize=queue_capacity)
        self._closed = False

    # -- ids ------------------------------------------------------------------

    def next_id(self, user_id: int) -> int:
        with self._lock:
            value = self._counters.get(user_id, 0) + 1
            self._counters[user_id] = value
            return value

    # -- active tasks ---------------------------------------------------------

    def register_task(self, task: Task) -> None:
        with self._lock:
            self._tasks.setdefault(task.user_id, {})[task.task_id] = task

    def unregister_task(self, user_id: int, task_id: int) -> None:
        with self._lock:
            self._pop_task(user_id, task_id)

    def get_task(self, user_id: int, task_id: int) -> Task | None:
        with self._lock:
            return self._tasks.get(user_id, {}).get(task_id)

    def is_active(self, user_id: int, task_id: int) -> bool:
        return self.get_task(user_id, task_id) is not None

    def count_user_tasks(self, user_id: int) -> int:
        with self._lock:
            return len(self._tasks.get(user_id, {}))

    def active_tasks_for_display(self, user_id: int, display: DisplayRef) -> list[Task]:
        with self._lock:
            tasks = self._tasks.get(user_id, {}).values()
            return [task for task in tasks if task.display == display]

    def attach_process(
        self,
        user_id: int,
        task_id: int,
        handle: RunnerHandle,
        pgid: int,
    ) -> bool:
        """Record the spawned process on its task; False when the task was cancelled meanwhile."""

        with self._lock:
            task = self._tasks.get(user_id, {}).get(task_id)
            if task is None:
                return False
            task.handle = handle
            task.pgid = pgid
            return True

    def set_current(self, task: Task | None) -> None:
        with self._lock:
            self._current = task

    def get_current(self) -> Task | None:
        with self._lock:
            return self._current

    # -- queue ----------------------------------------------------------------

    def enqueue_item(self, item: QueuedItem, *, timeout: float | None = None) -> None:
        """Make the item cancellable, then hand it to the worker.

        Blocks while the FIFO is full; `timeout=None` waits forever, `0` rejects at once.
        """

        with self._lock:
            if self._closed:
                raise QueueClosedError("Task queue is closed.")
            self._queued.setdefault(item.user_id, {})[item.task_id] = item
        try:
            if timeout == 0:
                self._pending.put_nowait(item)
            else:
                self._pending.put(item, timeout=timeout)
        except queue.Full as error:
            self.remove_queued_item(item.user_id, item.task_id)
            logger.warning(
                "Queue full (%d items): rejected task #%d of user %d",
                self.queue_capacity,
                item.task_id,
                item.user_id,
            )
            raise QueueFullError(f"Task queue is full ({self.queue_capacity} items).") from error

    def next_item(self, timeout: float | None = None) -> QueuedItem | None:
        """Block for the next pending item; None once the queue is closed and drained.

        Raises `queue.Empty` when `timeout` elapses first.
        """

        entry = self._pending.get(timeout=timeout)
        if entry is _QUEUE_CLOSED:
            return None
        return entry  # type: ignore[return-value]

    def close_queue(self) -> None:
        """Stop accepting submissions and wake the worker once the backlog is drained."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._pending.put_nowait(_QUEUE_CLOSED)
        except queue.Full:
            logger.warning("Queue closed while full; worker stops after its poll interval")

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def queue_size(self) -> int:
        return self._pending.qsize()

    def get_queued_item(self, user_id: int, task_id: int) -> QueuedItem | None:
        with self._lock:
            return self._queued.get(user_id, {}).get(task_id)

    def queued_items_for_display(self, user_id: int, display: DisplayRef) -> list[QueuedItem]:
        with self._lock:
            queued = self._queued.get(user_id, {}).values()
            items = [item for item in queued if item.display == display]
        return sorted(items, key=lambda item: item.index)

    def remove_queued_item(self, user_id: int, task_id: int) -> None:
        with self._lock:
            self._pop_queued(user_id, task_id)

    # -- cancellation ---------------------------------------------------------

    def cancel_queued_item(self, user_id: int, task_id: int) -> bool:
        with self._lock:
            item = self._pop_queued(user_id, task_id)
            if item is not None:
                item.mark_cancelled()
        # The item may already have been promoted to a running task.
        self.cancel_task(user_id, task_id)
        return item is not None

    def cancel_task(self, user_id: int, task_id: int) -> bool:
        with self._lock:
            task = self._pop_task(user_id, task_id)
            if task is None:
                return False
            task.cancel()
            handle = task.handle
            pgid = task.pgid
        logger.info("Cancelled task #%d of user %d", task_id, user_id)
        if handle is not None:
            self._terminate(handle, pgid)
        return True

    def cancel_all(self) -> int:
        """Cancel every queued and running task (service shutdown)."""

        with self._lock:
            queued = [
                (item.user_id, item.task_id)
                for items in self._queued.values()
                for item in items.values()
            ]
            running = [
                (task.user_id, task.task_id)
                for tasks in self._tasks.values()
                for task in tasks.values()
            ]
        count = 0
        for user_id, task_id in queued:
            count += int(self.cancel_queued_item(user_id, task_id))
        for user_id, task_id in running:
            count += int(self.cancel_task(user_id, task_id))
        return count

    def _terminate(self, handle: RunnerHandle, pgid: int) -> None:
        if pgid:
            handle.kill_group(pgid, grace_seconds=self.kill_grace_seconds)
            return
        # No recorded group: the runner leads its own group, so its pid names it.
        if not handle.kill_group(handle.pid, grace_seconds=self.kill_grace_seconds):
            handle.kill()

    # -- display cache ----------------------------------------------------------

    def init_display(
        self,
        display: DisplayRef,
        lines: list[str],
        controls: Controls | None = None,
    ) -> None:
        with self._lock:
            self._displays[display] = _DisplayEntry(
                lines=list(lines),
                controls=controls,
                pending=len(lines),
            )

    def update_line(
        self,
        display: DisplayRef,
        index: int,
        text: str,
        *,
        final: bool = False,
    ) -> tuple[list[str] | None, Controls | None, bool]:
        """Replace one row; return a snapshot of all rows, live controls and whether it changed.

        A resolved row only accepts its terminal text (`final=True`).
        """

        with self._lock:
            entry = self._displays.get(display)
            if entry is None:
                return None, None, True
            if not final and index in entry.resolved_rows:
                return list(entry.lines), entry.controls, False
            if 0 <= index < len(entry.lines):
                entry.lines[index] = text
            return list(entry.lines), entry.controls, True

    def get_lines(self, display: DisplayRef) -> list[str] | None:
        with self._lock:
            entry = self._displays.get(display)
            return list(entry.lines) if entry is not None else None

    def get_controls(self, display: DisplayRef) -> Controls | None:
        with self._lock:
            entry = self._displays.get(display)
            return entry.controls if entry is not None else None

    def claim_row(self, display: DisplayRef, index: int) -> bool:
        """Reserve the terminal transition of one row; only the first caller wins."""

        with self._lock:
            entry = self._displays.get(display)
            if entry is None:
                return True
            if index in entry.resolved_rows:
                return False
            entry.resolved_rows.add(index)
            return True

    def decrement_pending(self, display: DisplayRef) -> int:
        with self._lock:
            entry = self._displays.get(display)
            if entry is None or entry.pending is None:
                return 0
            entry.pending -= 1
            if entry.pending <= 0:
                entry.pending = None
                entry.controls = None
                return 0
            return entry.pending

    def pending_count(self, display: DisplayRef) -> int:
        with self._lock:
            entry = self._displays.get(display)
            if entry is None or entry.pending is None:
                return 0
            return entry.pending

    # -- helpers (lock held) -----------------------------------------------------

    def _pop_task(self, user_id: int, task_id: int) -> Task | None:
        tasks = self._tasks.get(user_id)
        if tasks is None:
            return None
        task = tasks.pop(task_id, None)
        if not tasks:
            del self._tasks[user_id]
        return task

    def _pop_queued(self, user_id: int, task_id: int) -> QueuedItem | None:
        items = self._queued.get(user_id)
        if items is None:
            return None
        item = items.pop(task_id, None)
        if not items:
            del self._queued[user_id]
        return item
