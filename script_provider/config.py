"""Resolved provider configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple
import logging
import os
import re

from core.command_runner import DEFAULT_BUFFER_SIZE
from core.config_loader import normalize_string_list
from core.errors import ConfigError

from .logging_config import TRACE


LEVELS: Dict[str, int] = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

DEFAULT_JOINER = "%s\n%s"
DEFAULT_ISOLATOR = "(\n%s\n)"

_PLACEHOLDER_PATTERN = re.compile(r"%[%s]")


def count_placeholders(template: str) -> int:
    """Count ``%s`` placeholders in ``template``; ``%%`` is a literal percent."""

    return sum(1 for match in _PLACEHOLDER_PATTERN.finditer(template) if match.group() == "%s")


def fill_placeholders(template: str, *values: str) -> str:
    """Substitute ``values`` for the ``%s`` placeholders of ``template`` in order."""

    remaining = list(values)

    def _replace(match: re.Match[str]) -> str:
        if match.group() == "%%":
            return "%"
        return remaining.pop(0)

    return _PLACEHOLDER_PATTERN.sub(_replace, template)


def check_template(name: str, template: str, expected: int) -> None:
    found = count_placeholders(template)
    if found != expected:
        raise ConfigError(
            f"{name} must contain exactly {expected} '%s' placeholder(s), found {found}: {template!r}"
        )


def parse_level(value: Any, *, field_name: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    name = str(value).strip().upper()
    if name not in LEVELS:
        valid = ", ".join(LEVELS)
        raise ConfigError(f"{field_name} must be one of {valid}, got {value!r}")
    return LEVELS[name]


def default_interpreter() -> Tuple[str, ...]:
    if os.name == "nt":
        return ("cmd", "/C")
    return ("/bin/sh", "-c")


class ReadFormat(str, Enum):
    RAW = "raw"
    BASE64 = "base64"


class CreatePlacement(str, Enum):
    """Where the create command runs during an update."""

    NONE = "none"
    BEFORE = "before"
    AFTER = "after"


class ResourceKind(str, Enum):
    """Resource variants, named after the commands they use."""

    CRD = "script_crd"
    CRDE = "script_crde"
    CRUD = "script_crud"
    CRUDE = "script_crude"

    @property
    def has_update(self) -> bool:
        return self in (ResourceKind.CRUD, ResourceKind.CRUDE)

    @property
    def has_exists(self) -> bool:
        return self in (ResourceKind.CRDE, ResourceKind.CRUDE)

    @classmethod
    def parse(cls, value: str) -> "ResourceKind":
        text = value.strip().lower()
        if not text.startswith("script_"):
            text = f"script_{text}"
        try:
            return cls(text)
        except ValueError as exc:
            valid = ", ".join(kind.value for kind in cls)
            raise ConfigError(f"Unknown resource kind {value!r}; expected one of {valid}") from exc


_KNOWN_KEYS = frozenset(
    {
        "kind",
        "interpreter",
        "working_directory",
        "include_parent_environment",
        "environment",
        "buffer_size",
        "command_prefix",
        "command_joiner",
        "command_isolator",
        "create_command",
        "read_command",
        "update_command",
        "delete_command",
        "exists_command",
        "exists_expected_status",
        "read_format",
        "read_line_prefix",
        "delete_on_read_failure",
        "delete_before_update",
        "create_before_update",
        "create_after_update",
        "log_level",
        "command_log_level",
        "command_log_width",
        "log_provider_name",
    }
)

# Options whose values are opaque text, never decoded from YAML on the command line.
TEXT_OPTIONS = frozenset(
    {
        "kind",
        "working_directory",
        "command_prefix",
        "command_joiner",
        "command_isolator",
        "create_command",
        "read_command",
        "update_command",
        "delete_command",
        "exists_command",
        "read_format",
        "read_line_prefix",
        "log_level",
        "command_log_level",
        "log_provider_name",
    }
)


@dataclass(frozen=True, slots=True)
class Config:
    """Fully resolved, read-only provider configuration."""

    working_directory: Path
    create_command: str
    read_command: str
    delete_command: str
    interpreter: Tuple[str, ...] = field(default_factory=default_interpreter)
    include_parent_environment: bool = True
    environment: Mapping[str, str] = field(default_factory=dict)
    buffer_size: int = DEFAULT_BUFFER_SIZE
    command_prefix: str = ""
    command_joiner: str = DEFAULT_JOINER
    command_isolator: str = DEFAULT_ISOLATOR
    update_command: str = ""
    exists_command: str = ""
    exists_expected_status: int = 0
    read_format: ReadFormat = ReadFormat.RAW
    read_line_prefix: str = ""
    delete_on_read_failure: bool = True
    delete_before_update: bool = False
    create_placement: CreatePlacement = CreatePlacement.NONE
    log_level: int = logging.WARNING
    command_log_level: int = logging.INFO
    command_log_width: int = 1
    log_provider_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "working_directory", Path(self.working_directory))
        if not self.interpreter:
            raise ConfigError("interpreter must not be empty")
        if not self.working_directory.is_absolute():
            raise ConfigError(f"working_directory must be absolute: {self.working_directory}")
        for name in ("create_command", "read_command", "delete_command"):
            if not getattr(self, name):
                raise ConfigError(f"{name} is required")
        if self.buffer_size <= 0:
            raise ConfigError(f"buffer_size must be positive, got {self.buffer_size}")
        if self.command_log_width < 0:
            raise ConfigError(f"command_log_width must not be negative, got {self.command_log_width}")
        check_template("command_joiner", self.command_joiner, 2)
        check_template("command_isolator", self.command_isolator, 1)
        object.__setattr__(self, "interpreter", tuple(self.interpreter))
        object.__setattr__(self, "environment", MappingProxyType(dict(self.environment)))
        if not self.update_command:
            object.__setattr__(self, "delete_before_update", True)
            object.__setattr__(self, "create_placement", CreatePlacement.AFTER)

    @property
    def create_before_update(self) -> bool:
        return self.create_placement is CreatePlacement.BEFORE

    @property
    def create_after_update(self) -> bool:
        return self.create_placement is CreatePlacement.AFTER

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        environ: Mapping[str, str] | None = None,
    ) -> "Config":
        """Resolve a raw option mapping, applying the provider defaults."""

        unknown = sorted(set(data) - _KNOWN_KEYS)
        if unknown:
            raise ConfigError(f"Unknown configuration option(s): {', '.join(unknown)}")

        environ = os.environ if environ is None else environ

        interpreter = tuple(normalize_string_list(data.get("interpreter"), field_name="interpreter"))
        if not interpreter:
            interpreter = default_interpreter()

        raw_workdir = data.get("working_directory") or environ.get("PWD") or os.getcwd()
        working_directory = Path(str(raw_workdir)).expanduser()
        if not working_directory.is_absolute():
            working_directory = (Path(environ.get("PWD") or os.getcwd()) / working_directory).resolve()

        create_before = _bool(data, "create_before_update", False)
        create_after = _bool(data, "create_after_update", False)
        if create_before and create_after:
            raise ConfigError("create_before_update conflicts with create_after_update")
        placement = CreatePlacement.NONE
        if create_before:
            placement = CreatePlacement.BEFORE
        elif create_after:
            placement = CreatePlacement.AFTER

        read_format_value = str(data.get("read_format", ReadFormat.RAW.value))
        try:
            read_format = ReadFormat(read_format_value)
        except ValueError as exc:
            raise ConfigError(f"read_format must be 'raw' or 'base64', got {read_format_value!r}") from exc

        return cls(
            interpreter=interpreter,
            working_directory=working_directory,
            include_parent_environment=_bool(data, "include_parent_environment", True),
            environment=_environment(data.get("environment")),
            buffer_size=_int(data, "buffer_size", DEFAULT_BUFFER_SIZE),
            command_prefix=_str(data, "command_prefix"),
            command_joiner=_str(data, "command_joiner", DEFAULT_JOINER),
            command_isolator=_str(data, "command_isolator", DEFAULT_ISOLATOR),
            create_command=_str(data, "create_command"),
            read_command=_str(data, "read_command"),
            update_command=_str(data, "update_command"),
            delete_command=_str(data, "delete_command"),
            exists_command=_str(data, "exists_command"),
            exists_expected_status=_int(data, "exists_expected_status", 0),
            read_format=read_format,
            read_line_prefix=_str(data, "read_line_prefix"),
            delete_on_read_failure=_bool(data, "delete_on_read_failure", True),
            delete_before_update=_bool(data, "delete_before_update", False),
            create_placement=placement,
            log_level=parse_level(data.get("log_level", "WARN"), field_name="log_level"),
            command_log_level=parse_level(data.get("command_log_level", "INFO"), field_name="command_log_level"),
            command_log_width=_int(data, "command_log_width", 1),
            log_provider_name=_str(data, "log_provider_name"),
        )


def _str(data: Mapping[str, Any], key: str, default: str = "") -> str:
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from exc


def _bool(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _environment(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError("environment must be a mapping of variable names to values")
    return {str(key): str(item) for key, item in value.items()}
