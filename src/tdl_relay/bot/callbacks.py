"""Inline button payloads for task cancellation."""

from __future__ import annotations

from dataclasses import dataclass

CANCEL_BATCH_PREFIX = "cancel_summary_"
CANCEL_TASK_PREFIX = "cancel_"


@dataclass(frozen=True, slots=True)
class CancelRequest:
    """Decoded cancel payload; `task_id=None` means the whole batch of the display."""

    user_id: int
    task_id: int | None = None

    @property
    def is_batch(self) -> bool:
        return self.task_id is None


def cancel_task_payload(user_id: int, task_id: int) -> str:
    return f"{CANCEL_TASK_PREFIX}{user_id}_{task_id}"


def cancel_batch_payload(user_id: int) -> str:
    return f"{CANCEL_BATCH_PREFIX}{user_id}"


def parse_cancel_payload(data: str) -> CancelRequest | None:
    """Decode `cancel_summary_<user>` or `cancel_<user>_<task>`; None for anything else."""

    try:
        if data.startswith(CANCEL_BATCH_PREFIX):
            return CancelRequest(user_id=int(data[len(CANCEL_BATCH_PREFIX) :]))
        if data.startswith(CANCEL_TASK_PREFIX):
            user_part, task_part = data[len(CANCEL_TASK_PREFIX) :].split("_", 1)
            return CancelRequest(user_id=int(user_part), task_id=int(task_part))
    except ValueError:
        return None
    return None
