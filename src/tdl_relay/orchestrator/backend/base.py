"""Runner interface for orchestrator task execution."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol


class RunnerStartError(RuntimeError):
    """Runner process could not be spawned or its output pipe could not be opened."""


class RunnerHandle(Protocol):
    """Live runner process as seen by the task executor."""

    @property
    def pid(self) -> int:
        """OS process id of the runner."""

    @property
    def pgid(self) -> int:
        """Process-group id, 0 while unknown."""

    @property
    def deadline(self) -> float:
        """Absolute `time.monotonic()` deadline the run must finish by."""

    def resolve_pgid(self) -> int:
        """Look up the process-group id if it is not known yet; 0 when unavailable."""

    def iter_lines(self) -> Iterator[str]:
        """Yield merged stdout/stderr lines until the stream closes."""

    def wait(self, timeout: float | None = None) -> int:
        """Wait for exit and return the exit code.

        Without `timeout` the wait is bounded by the deadline. Raises TimeoutError.
        """

    def kill_group(self, pgid: int, *, grace_seconds: float) -> bool:
        """SIGTERM the group, wait the grace window, then SIGKILL.

        Returns False when the group no longer exists.
        """

    def kill(self) -> None:
        """Force-kill the bare process."""


class ProcessRunner(Protocol):
    """Protocol implemented by runner adapters."""

    def start(self, target: str, *, lock_token: str, deadline: float) -> RunnerHandle:
        """Spawn the runner for one target; raises RunnerStartError."""
