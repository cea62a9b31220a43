"""Lifecycle sequencing for command-managed resources."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List
import logging

from core.command_runner import CancellationToken, ExecutionResult
from core.errors import CommandError, ConfigError, LifecycleError

from .composer import CommandComposer
from .config import Config, CreatePlacement, ResourceKind
from .output import ReadOutputParser
from .process import ScriptRunner

_LOGGER = logging.getLogger(__name__)


class ResourceState(str, Enum):
    ABSENT = "absent"
    PRESENT = "present"


class Operation(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXISTS = "exists"


@dataclass(frozen=True, slots=True)
class Observation:
    """Resource state as computed by a read."""

    state: ResourceState
    payload: str = ""

    @property
    def present(self) -> bool:
        return self.state is ResourceState.PRESENT


@dataclass(frozen=True, slots=True)
class Step:
    """One command run as part of an operation."""

    name: Operation
    command: str


class LifecycleSequencer:
    """Runs the commands of one resource instance in lifecycle order.

    The sequencer assumes exclusive access to its resource: the caller must
    not invoke two operations on the same instance concurrently. ``state``
    holds the state computed by the last operation.
    """

    def __init__(
        self,
        config: Config,
        *,
        kind: ResourceKind | None = None,
        runner: ScriptRunner | None = None,
        state: ResourceState = ResourceState.ABSENT,
    ) -> None:
        if kind is not None and kind.has_exists and not config.exists_command:
            raise ConfigError(f"{kind.value} requires exists_command")
        self.config = config
        self.kind = kind
        self.state = state
        self.has_update = bool(config.update_command) and (kind is None or kind.has_update)
        self.has_exists = bool(config.exists_command) and (kind is None or kind.has_exists)
        self._composer = CommandComposer.from_config(config)
        self._parser = ReadOutputParser.from_config(config)
        self._runner = runner or ScriptRunner(config)

    def steps(self, operation: Operation) -> List[Step]:
        """Return the commands ``operation`` runs, in order."""

        config = self.config
        if operation is Operation.CREATE:
            return [Step(Operation.CREATE, config.create_command)]
        if operation is Operation.READ:
            return [Step(Operation.READ, config.read_command)]
        if operation is Operation.DELETE:
            return [Step(Operation.DELETE, config.delete_command)]
        if operation is Operation.EXISTS:
            if not self.has_exists:
                return self.steps(Operation.READ)
            return [Step(Operation.EXISTS, config.exists_command)]

        if not self.has_update:
            return [
                Step(Operation.DELETE, config.delete_command),
                Step(Operation.CREATE, config.create_command),
            ]
        steps: List[Step] = []
        if config.delete_before_update:
            steps.append(Step(Operation.DELETE, config.delete_command))
        if config.create_placement is CreatePlacement.BEFORE:
            steps.append(Step(Operation.CREATE, config.create_command))
        steps.append(Step(Operation.UPDATE, config.update_command))
        if config.create_placement is CreatePlacement.AFTER:
            steps.append(Step(Operation.CREATE, config.create_command))
        return steps

    def render(self, operation: Operation) -> str:
        """Compose every command of ``operation`` into a single script.

        Lifecycle operations never run this script: each step runs on its own,
        so a failed update command stops the create that follows it. The joiner
        and isolator only shape this rendered form.
        """

        return self._composer.compose(*(step.command for step in self.steps(operation)))

    def create(self, *, cancel: CancellationToken | None = None) -> None:
        if self.state is ResourceState.PRESENT:
            raise LifecycleError("Cannot create a resource that is already present")
        result = self._run(Operation.CREATE, self.steps(Operation.CREATE)[0], cancel)
        if not result.ok:
            raise CommandError(result, operation=Operation.CREATE.value)
        self.state = ResourceState.PRESENT

    def read(self, *, cancel: CancellationToken | None = None) -> Observation:
        result = self._run(Operation.READ, self.steps(Operation.READ)[0], cancel)
        if not result.ok:
            return self._read_failed(result, f"read command failed with exit code {result.returncode}")

        parsed = self._parser.parse(result.stdout)
        if not parsed.present:
            return self._read_failed(result, "read command produced no matching output")

        self.state = ResourceState.PRESENT
        return Observation(ResourceState.PRESENT, parsed.payload)

    def exists(self, *, cancel: CancellationToken | None = None) -> bool:
        if not self.has_exists:
            return self.read(cancel=cancel).present

        result = self._run(Operation.EXISTS, self.steps(Operation.EXISTS)[0], cancel)
        # Any status other than the expected one counts as absent, including
        # failures of the exists command itself.
        present = result.returncode == self.config.exists_expected_status
        _LOGGER.debug(
            "exists command returned %d (expected %d)",
            result.returncode,
            self.config.exists_expected_status,
            extra=self._runner.log_fields(Operation.EXISTS.value),
        )
        self.state = ResourceState.PRESENT if present else ResourceState.ABSENT
        return present

    def update(self, *, cancel: CancellationToken | None = None) -> None:
        if self.state is ResourceState.ABSENT:
            raise LifecycleError("Cannot update a resource that is absent")
        for step in self.steps(Operation.UPDATE):
            result = self._run(Operation.UPDATE, step, cancel)
            if not result.ok:
                raise CommandError(result, operation=Operation.UPDATE.value, step=step.name.value)
            if step.name is Operation.DELETE:
                self.state = ResourceState.ABSENT
            else:
                self.state = ResourceState.PRESENT

    def delete(self, *, cancel: CancellationToken | None = None) -> None:
        if self.state is ResourceState.ABSENT:
            _LOGGER.debug("resource already absent, skipping delete")
            return
        result = self._run(Operation.DELETE, self.steps(Operation.DELETE)[0], cancel)
        if not result.ok:
            raise CommandError(result, operation=Operation.DELETE.value)
        self.state = ResourceState.ABSENT

    def _read_failed(self, result: ExecutionResult, reason: str) -> Observation:
        if not self.config.delete_on_read_failure:
            raise CommandError(result, operation=Operation.READ.value, reason=reason)
        _LOGGER.warning(
            "%s, dropping resource from state",
            reason,
            extra=self._runner.log_fields(Operation.READ.value),
        )
        self.state = ResourceState.ABSENT
        return Observation(ResourceState.ABSENT)

    def _run(self, operation: Operation, step: Step, cancel: CancellationToken | None) -> ExecutionResult:
        fields = self._runner.log_fields(operation.value, step.name.value)
        _LOGGER.debug("running %s command", step.name.value, extra=fields)
        result = self._runner.run(
            self._composer.compose(step.command),
            operation=operation.value,
            step=step.name.value,
            cancel=cancel,
        )
        _LOGGER.debug("%s command exited with %d", step.name.value, result.returncode, extra=fields)
        return result
