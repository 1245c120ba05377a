"""Subprocess-based runner for the tdl forwarding script."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from collections.abc import Iterator
from pathlib import Path

from tdl_relay.orchestrator.backend.base import RunnerStartError

logger = logging.getLogger(__name__)

_HAS_PROCESS_GROUPS = hasattr(os, "killpg") and hasattr(os, "getpgid")


class ScriptRunner:
    """Spawn `<interpreter> <script> <target> <lock_token>` in its own process group."""

    def __init__(
        self,
        *,
        script_path: Path,
        interpreter: str = "bash",
        env: dict[str, str] | None = None,
    ) -> None:
        self.script_path = script_path
        self.interpreter = interpreter
        self.env = env

    def start(self, target: str, *, lock_token: str, deadline: float) -> ScriptRunHandle:
        run_args = [self.interpreter, str(self.script_path), target, lock_token]
        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=_HAS_PROCESS_GROUPS,
            )
        except FileNotFoundError as error:
            raise RunnerStartError(f"Runner command not found: {self.interpreter}") from error
        except OSError as error:
            raise RunnerStartError(f"Runner failed to start: {error}") from error
        if process.stdout is None:
            _kill_quietly(process)
            raise RunnerStartError("Runner stdout pipe is unavailable.")

        handle = ScriptRunHandle(process, deadline=deadline)
        handle.resolve_pgid()
        logger.debug("Started runner pid=%s pgid=%s for %s", handle.pid, handle.pgid, lock_token)
        return handle


class ScriptRunHandle:
    """`RunnerHandle` over a `subprocess.Popen` started in a new session."""

    def __init__(self, process: subprocess.Popen[str], *, deadline: float) -> None:
        self._process = process
        self._deadline = deadline
        self._pgid = 0

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def pgid(self) -> int:
        return self._pgid

    @property
    def deadline(self) -> float:
        return self._deadline

    def resolve_pgid(self) -> int:
        if self._pgid or not _HAS_PROCESS_GROUPS:
            return self._pgid
        try:
            self._pgid = os.getpgid(self._process.pid)
        except OSError:
            return 0
        return self._pgid

    def iter_lines(self) -> Iterator[str]:
        stream = self._process.stdout
        if stream is None:
            return
        try:
            yield from stream
        finally:
            stream.close()

    def wait(self, timeout: float | None = None) -> int:
        if timeout is None:
            timeout = max(0.0, self._deadline - time.monotonic())
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired as error:
            raise TimeoutError(
                f"Runner pid={self.pid} still running after {timeout:.1f}s",
            ) from error

    def kill_group(self, pgid: int, *, grace_seconds: float) -> bool:
        if not _HAS_PROCESS_GROUPS or pgid <= 0:
            return self._terminate_process(grace_seconds)
        try:
            os.killpg(pgid, signal.SIGTERM)
        except ProcessLookupError:
            return False
        except PermissionError:
            logger.warning("Not permitted to signal process group %s", pgid)
            return False
        time.sleep(grace_seconds)
        try:
            os.killpg(pgid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        return True

    def kill(self) -> None:
        _kill_quietly(self._process)

    def _terminate_process(self, grace_seconds: float) -> bool:
        if self._process.poll() is not None:
            return False
        try:
            self._process.terminate()
        except OSError:
            return False
        try:
            self._process.wait(timeout=grace_seconds)
        except subprocess.TimeoutExpired:
            _kill_quietly(self._process)
        return True


def _kill_quietly(process: subprocess.Popen[str]) -> None:
    try:
        process.kill()
    except OSError:
        return
