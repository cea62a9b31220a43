"""Manage external resources through user supplied shell commands."""
from __future__ import annotations

from .composer import CommandComposer
from .config import Config, CreatePlacement, ReadFormat, ResourceKind
from .lifecycle import LifecycleSequencer, Observation, Operation, ResourceState
from .output import ReadOutputParser
from .process import ScriptRunner

__all__ = [
    "CommandComposer",
    "Config",
    "CreatePlacement",
    "LifecycleSequencer",
    "Observation",
    "Operation",
    "ReadFormat",
    "ReadOutputParser",
    "ResourceKind",
    "ResourceState",
    "ScriptRunner",
]
