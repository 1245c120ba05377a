"""Runner implementations for the task executor."""

from tdl_relay.orchestrator.backend.base import ProcessRunner, RunnerHandle, RunnerStartError
from tdl_relay.orchestrator.backend.script_backend import ScriptRunHandle, ScriptRunner

__all__ = [
    "ProcessRunner",
    "RunnerHandle",
    "RunnerStartError",
    "ScriptRunHandle",
    "ScriptRunner",
]
