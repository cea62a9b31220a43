"""Exception types shared by the runner, the configuration layer and the lifecycle."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .command_runner import ExecutionResult


class ScriptError(RuntimeError):
    """Base class for every failure reported by script-provider."""


class ConfigError(ScriptError):
    """Raised when configuration values or command templates are invalid."""


class SpawnError(ScriptError):
    """Raised when the interpreter process cannot be started."""


class WorkingDirectoryError(ScriptError):
    """Raised when the configured working directory is unusable."""


class DecodeError(ScriptError):
    """Raised when read output cannot be decoded."""


class CancelledError(ScriptError):
    """Raised when a running command was cancelled by the caller."""


class LifecycleError(ScriptError):
    """Raised when an operation is invoked in a state that forbids it."""


class CommandError(ScriptError):
    """Raised when a command exits with a non-zero status."""

    def __init__(
        self,
        result: "ExecutionResult",
        *,
        operation: str | None = None,
        step: str | None = None,
        reason: str | None = None,
    ) -> None:
        label = step or operation or "command"
        if operation and step and operation != step:
            label = f"{operation}/{step}"
        message = reason or f"{label} command failed with exit code {result.returncode}"
        tail = result.stderr_tail()
        if tail:
            message = f"{message}\nstderr: {tail}"
        super().__init__(message)
        self.result = result
        self.operation = operation
        self.step = step

    @property
    def returncode(self) -> int:
        return self.result.returncode
