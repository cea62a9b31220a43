"""Runs composed command texts under the configured interpreter."""
from __future__ import annotations

from typing import Dict, List
import logging

from core.command_runner import (
    CancellationToken,
    CommandRunner,
    ExecutionResult,
    SubprocessCommandRunner,
)

from .config import Config
from .logging_config import COMMAND_LOGGER_NAME


class ScriptRunner:
    """Binds a :class:`Config` to a :class:`CommandRunner`."""

    def __init__(self, config: Config, runner: CommandRunner | None = None) -> None:
        self._config = config
        self._runner = runner or SubprocessCommandRunner(
            buffer_size=config.buffer_size,
            log_level=config.command_log_level,
            log_width=config.command_log_width,
            logger=logging.getLogger(COMMAND_LOGGER_NAME),
        )

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def argv(self, command: str) -> List[str]:
        return [*self._config.interpreter, command]

    def log_fields(self, operation: str, step: str | None = None) -> Dict[str, str]:
        fields = {"provider": self._config.log_provider_name, "operation": operation}
        if step and step != operation:
            fields["step"] = step
        return fields

    def run(
        self,
        command: str,
        *,
        operation: str,
        step: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Execute ``command`` and return its result without checking the exit code."""

        label = f"{operation}/{step}" if step and step != operation else operation
        return self._runner.run(
            self.argv(command),
            cwd=self._config.working_directory,
            env=self._config.environment,
            inherit_env=self._config.include_parent_environment,
            check=False,
            note=label,
            cancel=cancel,
            log_extra=self.log_fields(operation, step),
        )
