"""Utilities for executing commands with bounded, line-logged output capture."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, List, Mapping, Sequence, Tuple
import logging
import os
import shlex
import signal
import subprocess
import threading
import time

from .errors import CancelledError, CommandError, SpawnError, WorkingDirectoryError

DEFAULT_BUFFER_SIZE = 1024 * 1024
READ_CHUNK_BYTES = 65_536
TERMINATE_GRACE_SEC = 2.0
POLL_INTERVAL_SEC = 0.05
STDERR_TAIL_BYTES = 2048


@dataclass(slots=True)
class ExecutionResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def truncated(self) -> bool:
        return self.stdout_truncated

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self, limit: int = STDERR_TAIL_BYTES) -> str:
        """Return the decoded end of the captured stderr."""

        return self.stderr[-limit:].decode("utf-8", errors="replace").strip()


class CancellationToken:
    """Thread-safe flag used to abort a running command."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


class StreamCapture:
    """Accumulates one output stream up to ``limit`` bytes and logs it line by line.

    Bytes beyond ``limit`` are dropped from the buffer and flag the capture as
    truncated, but they are still split into lines and logged.
    """

    def __init__(
        self,
        name: str,
        *,
        limit: int,
        logger: logging.Logger,
        level: int = logging.INFO,
        width: int = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        if limit <= 0:
            raise ValueError("Stream buffer limit must be positive")
        self.name = name
        self.truncated = False
        self._limit = limit
        self._logger = logger
        self._level = level
        self._width = max(1, width)
        self._extra = dict(extra or {})
        self._buffer = bytearray()
        self._pending = bytearray()
        self._line_number = 0

    @property
    def data(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> None:
        remaining = self._limit - len(self._buffer)
        if remaining > 0:
            self._buffer += chunk[:remaining]
        if len(chunk) > remaining:
            self.truncated = True

        self._pending += chunk
        while True:
            index = self._pending.find(b"\n")
            if index < 0:
                break
            line = bytes(self._pending[:index])
            del self._pending[: index + 1]
            self._emit(line)

        # A line without a newline may not grow past the buffer size.
        if len(self._pending) > self._limit:
            self._emit(bytes(self._pending))
            self._pending.clear()

    def close(self) -> None:
        if self._pending:
            self._emit(bytes(self._pending))
            self._pending.clear()

    def _emit(self, raw: bytes) -> None:
        self._line_number += 1
        if not self._logger.isEnabledFor(self._level):
            return
        text = raw.rstrip(b"\r").decode("utf-8", errors="replace")
        extra = dict(self._extra)
        extra["stream"] = self.name
        extra["line_number"] = self._line_number
        self._logger.log(self._level, "%*d | %s", self._width, self._line_number, text, extra=extra)


def _drain(pipe: BinaryIO, capture: StreamCapture) -> None:
    try:
        for chunk in iter(lambda: pipe.read1(READ_CHUNK_BYTES), b""):
            capture.feed(chunk)
    finally:
        capture.close()


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        inherit_env: bool = True,
        check: bool = True,
        note: str | None = None,
        cancel: CancellationToken | None = None,
        log_extra: Mapping[str, Any] | None = None,
    ) -> ExecutionResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)

    @staticmethod
    def _finalize(result: ExecutionResult, *, check: bool) -> ExecutionResult:
        if check and result.returncode != 0:
            raise CommandError(result)
        return result


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    stdout and stderr are drained concurrently by two reader threads so a
    chatty child can never block on a full pipe.
    """

    def __init__(
        self,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        log_level: int = logging.INFO,
        log_width: int = 1,
        logger: logging.Logger | None = None,
        terminate_grace: float = TERMINATE_GRACE_SEC,
        poll_interval: float = POLL_INTERVAL_SEC,
    ) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self.buffer_size = buffer_size
        self.log_level = log_level
        self.log_width = log_width
        self._logger = logger or logging.getLogger(__name__)
        self._terminate_grace = terminate_grace
        self._poll_interval = poll_interval

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None, *, inherit: bool) -> Dict[str, str] | None:
        if not inherit:
            return dict(env or {})
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    @staticmethod
    def _resolve_cwd(cwd: Path | str | None) -> str | None:
        if cwd is None:
            return None
        path = Path(cwd)
        if not path.is_dir():
            raise WorkingDirectoryError(f"Working directory does not exist or is not a directory: {path}")
        return str(path)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        inherit_env: bool = True,
        check: bool = True,
        note: str | None = None,
        cancel: CancellationToken | None = None,
        log_extra: Mapping[str, Any] | None = None,
    ) -> ExecutionResult:
        argv = list(command)
        if not argv:
            raise SpawnError("Cannot run an empty command")
        workdir = self._resolve_cwd(cwd)
        merged_env = self._merge_environment(env, inherit=inherit_env)
        if cancel is not None and cancel.cancelled:
            raise CancelledError(f"Command cancelled before start: {self.format_command(argv[:1])}")

        try:
            process = subprocess.Popen(
                argv,
                cwd=workdir,
                env=merged_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            raise SpawnError(f"Failed to start {argv[0]!r}: {exc}") from exc

        if note:
            self._logger.debug("started %s (pid %d)", note, process.pid)

        stdout, stderr = self._captures(log_extra)
        readers = [
            threading.Thread(
                target=_drain,
                args=(process.stdout, stdout),
                daemon=True,
                name=f"stdout-reader-{process.pid}",
            ),
            threading.Thread(
                target=_drain,
                args=(process.stderr, stderr),
                daemon=True,
                name=f"stderr-reader-{process.pid}",
            ),
        ]
        for reader in readers:
            reader.start()

        completed = False
        try:
            completed = self._wait(process, cancel) and self._join_readers(process, readers, cancel)
        finally:
            if process.poll() is None:
                self._stop(process)
            for reader in readers:
                reader.join()
            for pipe in (process.stdout, process.stderr):
                if pipe is not None:
                    pipe.close()

        if not completed:
            raise CancelledError(f"Command cancelled: {note or self.format_command(argv[:1])}")

        result = ExecutionResult(
            command=argv,
            returncode=process.returncode,
            stdout=stdout.data,
            stderr=stderr.data,
            stdout_truncated=stdout.truncated,
            stderr_truncated=stderr.truncated,
        )
        if result.stdout_truncated or result.stderr_truncated:
            self._logger.warning(
                "output exceeded %d bytes and was truncated (stdout=%s, stderr=%s)",
                self.buffer_size,
                result.stdout_truncated,
                result.stderr_truncated,
                extra=dict(log_extra or {}),
            )
        return self._finalize(result, check=check)

    def _captures(self, log_extra: Mapping[str, Any] | None) -> Tuple[StreamCapture, StreamCapture]:
        def make(name: str) -> StreamCapture:
            return StreamCapture(
                name,
                limit=self.buffer_size,
                logger=self._logger,
                level=self.log_level,
                width=self.log_width,
                extra=log_extra,
            )

        return make("stdout"), make("stderr")

    def _wait(self, process: subprocess.Popen, cancel: CancellationToken | None) -> bool:
        """Block until ``process`` exits; return False when cancelled first."""

        if cancel is None:
            process.wait()
            return True
        while True:
            try:
                process.wait(timeout=self._poll_interval)
                return True
            except subprocess.TimeoutExpired:
                if cancel.cancelled:
                    self._stop(process)
                    return False

    def _join_readers(
        self,
        process: subprocess.Popen,
        readers: Sequence[threading.Thread],
        cancel: CancellationToken | None,
    ) -> bool:
        """Wait for both streams to reach EOF; return False when cancelled first.

        Background children of the command inherit its pipes and can keep them
        open after the command itself has exited.
        """

        if cancel is None:
            return True
        for reader in readers:
            while reader.is_alive():
                reader.join(timeout=self._poll_interval)
                if reader.is_alive() and cancel.cancelled:
                    self._stop_group(process, readers)
                    return False
        return True

    def _stop_group(self, process: subprocess.Popen, readers: Sequence[threading.Thread]) -> None:
        """Signal what is left of the process group once its leader has exited."""

        self._signal(process, force=False)
        deadline = time.monotonic() + self._terminate_grace
        for reader in readers:
            reader.join(timeout=max(0.0, deadline - time.monotonic()))
        if any(reader.is_alive() for reader in readers):
            self._logger.debug("process group %d ignored SIGTERM, killing", process.pid)
            self._signal(process, force=True)

    def _stop(self, process: subprocess.Popen) -> None:
        self._signal(process, force=False)
        try:
            process.wait(timeout=self._terminate_grace)
            return
        except subprocess.TimeoutExpired:
            self._logger.debug("pid %d ignored SIGTERM, killing", process.pid)
        self._signal(process, force=True)
        process.wait()

    @staticmethod
    def _signal(process: subprocess.Popen, *, force: bool) -> None:
        if os.name != "posix":
            if force:
                process.kill()
            else:
                process.terminate()
            return
        try:
            os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
        except ProcessLookupError:
            pass


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them.

    Results can be scripted per command text (the last argv element) with
    :meth:`respond`; anything else succeeds with empty output.
    """

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []
        self._responses: Dict[str, Tuple[int, bytes, bytes]] = {}

    def respond(self, text: str, *, returncode: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> None:
        self._responses[text] = (returncode, stdout, stderr)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        inherit_env: bool = True,
        check: bool = True,
        note: str | None = None,
        cancel: CancellationToken | None = None,
        log_extra: Mapping[str, Any] | None = None,
    ) -> ExecutionResult:
        if cancel is not None and cancel.cancelled:
            raise CancelledError("Command cancelled before start")
        self.commands.append(
            RecordedCommand(
                command=list(command),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env else {},
                note=note,
            )
        )
        key = command[-1] if command else ""
        returncode, stdout, stderr = self._responses.get(key, (0, b"", b""))
        result = ExecutionResult(command=list(command), returncode=returncode, stdout=stdout, stderr=stderr)
        return self._finalize(result, check=check)

    def iter_commands(self) -> Iterable[RecordedCommand]:
        return iter(self.commands)

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            cmd = self.format_command(record.command)
            cwd = record.cwd or default_cwd
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(cmd)
            yield " ".join(parts)
