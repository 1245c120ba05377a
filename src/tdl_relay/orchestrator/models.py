"""Domain models for the serial task queue and its progress displays."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tdl_relay.orchestrator.backend.base import RunnerHandle


class TaskStatus(str, Enum):
    """Executor lifecycle states."""

    STARTING = "starting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.STARTING, TaskStatus.RUNNING)


@dataclass(frozen=True, slots=True)
class DisplayRef:
    """One renderable message: (chat, message) pair."""

    chat_id: int
    message_id: int


@dataclass(frozen=True, slots=True)
class Button:
    """Interactive control carrying an opaque callback payload."""

    label: str
    payload: str


@dataclass(frozen=True, slots=True)
class Controls:
    """Rows of buttons attached to a display unit."""

    rows: tuple[tuple[Button, ...], ...]

    @classmethod
    def single(cls, label: str, payload: str) -> Controls:
        return cls(rows=((Button(label=label, payload=payload),),))


@dataclass(slots=True)
class QueuedItem:
    """Submitted work waiting for its turn in the serial queue."""

    target: str
    user_id: int
    task_id: int
    display: DisplayRef | None = None
    index: int = 0
    shared: bool = False
    _cancelled: bool = field(default=False, repr=False)
    _cancel_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def mark_cancelled(self) -> None:
        with self._cancel_lock:
            self._cancelled = True

    @property
    def cancelled(self) -> bool:
        with self._cancel_lock:
            return self._cancelled

    @property
    def lock_token(self) -> str:
        """Unique token handed to the runner so concurrent runs never share a lock."""

        return f"{self.user_id}_{self.task_id}"


@dataclass(slots=True)
class Task:
    """In-flight execution bound to a spawned runner process."""

    task_id: int
    user_id: int
    display: DisplayRef | None = None
    handle: RunnerHandle | None = None
    pgid: int = 0
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass(slots=True)
class TaskOutcome:
    """Terminal result of one executor invocation."""

    status: TaskStatus
    summary: str
    exit_code: int | None = None
