"""Shared test fixtures."""

from __future__ import annotations

import os
import sys
import threading
from collections.abc import Iterator
from pathlib import Path

import pytest

from tdl_relay.orchestrator.backend import echo_runner
from tdl_relay.orchestrator.backend.base import RunnerStartError
from tdl_relay.orchestrator.backend.script_backend import ScriptRunner
from tdl_relay.orchestrator.display import DisplayAggregator
from tdl_relay.orchestrator.models import Controls, DisplayRef
from tdl_relay.orchestrator.registry import TaskRegistry


class FakeSurface:
    """Records every display call; message ids are handed out sequentially."""

    def __init__(self, *, fail_send: bool = False) -> None:
        self.fail_send = fail_send
        self.sent: list[tuple[int, str, Controls | None, int | None]] = []
        self.edits: list[tuple[DisplayRef, str, Controls | None]] = []
        self.deleted: list[DisplayRef] = []
        self._next_id = 100
        self._lock = threading.Lock()

    def send(self, chat_id, text, controls=None, reply_to=None):
        with self._lock:
            if self.fail_send:
                return None
            self.sent.append((chat_id, text, controls, reply_to))
            self._next_id += 1
            return DisplayRef(chat_id=chat_id, message_id=self._next_id)

    def edit(self, ref, text, controls=None):
        with self._lock:
            self.edits.append((ref, text, controls))
        return True

    def delete(self, ref):
        with self._lock:
            self.deleted.append(ref)
        return True

    def last_text(self, ref: DisplayRef) -> str | None:
        with self._lock:
            for edited_ref, text, _ in reversed(self.edits):
                if edited_ref == ref:
                    return text
        return None

    def last_controls(self, ref: DisplayRef) -> Controls | None:
        with self._lock:
            for edited_ref, _, controls in reversed(self.edits):
                if edited_ref == ref:
                    return controls
        return None


class FakeHandle:
    """Scripted runner handle; `hang=True` keeps the stream open until killed.

    Callables in `lines` are invoked by the reader instead of being yielded.
    """

    def __init__(
        self,
        lines: list[str] | None = None,
        *,
        exit_code: int = 0,
        pid: int = 4242,
        pgid: int = 4242,
        hang: bool = False,
        deadline: float = 0.0,
    ) -> None:
        self.lines = list(lines or [])
        self.exit_code = exit_code
        self._pid = pid
        self._pgid = pgid
        self.hang = hang
        self._deadline = deadline
        self.kill_calls: list[tuple[int, float]] = []
        self.killed = False
        self.streaming = threading.Event()
        self._released = threading.Event()

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def pgid(self) -> int:
        return self._pgid

    @property
    def deadline(self) -> float:
        return self._deadline

    def resolve_pgid(self) -> int:
        return self._pgid

    def iter_lines(self) -> Iterator[str]:
        self.streaming.set()
        for line in self.lines:
            if callable(line):
                line()
                continue
            yield line
        if self.hang:
            self._released.wait(timeout=10)

    def wait(self, timeout: float | None = None) -> int:
        return self.exit_code

    def kill_group(self, pgid: int, *, grace_seconds: float) -> bool:
        self.kill_calls.append((pgid, grace_seconds))
        self._released.set()
        return True

    def kill(self) -> None:
        self.killed = True
        self._released.set()


class FakeRunner:
    """Hands out prepared handles in order and records every start call."""

    def __init__(self, handles: list[FakeHandle] | None = None, *, fail: bool = False) -> None:
        self.handles = list(handles or [])
        self.fail = fail
        self.started: list[tuple[str, str]] = []

    def start(self, target: str, *, lock_token: str, deadline: float) -> FakeHandle:
        if self.fail:
            raise RunnerStartError("Runner command not found: bash")
        self.started.append((target, lock_token))
        handle = self.handles.pop(0) if self.handles else FakeHandle()
        handle._deadline = deadline
        return handle


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    for name in list(os.environ):
        if name.startswith("TDL_RELAY_"):
            monkeypatch.delenv(name)


@pytest.fixture()
def registry() -> TaskRegistry:
    return TaskRegistry(queue_capacity=10, kill_grace_seconds=0.0)


@pytest.fixture()
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture()
def aggregator(registry: TaskRegistry, surface: FakeSurface) -> DisplayAggregator:
    return DisplayAggregator(registry=registry, surface=surface)


@pytest.fixture()
def make_handle():
    return FakeHandle


@pytest.fixture()
def make_runner():
    return FakeRunner


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def echo_runner_factory():
    """Build a real `ScriptRunner` around the bundled echo runner."""

    def _factory(**env: str) -> ScriptRunner:
        return ScriptRunner(
            script_path=Path(echo_runner.__file__),
            interpreter=sys.executable,
            env={key.upper(): value for key, value in env.items()},
        )

    return _factory
