"""Combine logical lifecycle commands into one executable text."""
from __future__ import annotations

from dataclasses import dataclass
from functools import reduce

from .config import (
    DEFAULT_ISOLATOR,
    DEFAULT_JOINER,
    Config,
    check_template,
    fill_placeholders,
)


@dataclass(frozen=True, slots=True)
class CommandComposer:
    """Applies the configured prefix, joiner and isolator templates.

    ``compose(a, b, c)`` yields ``prefix + isolator(joiner(joiner(a, b), c))``;
    a single command only receives the prefix.
    """

    prefix: str = ""
    joiner: str = DEFAULT_JOINER
    isolator: str = DEFAULT_ISOLATOR

    @classmethod
    def from_config(cls, config: Config) -> "CommandComposer":
        return cls(
            prefix=config.command_prefix,
            joiner=config.command_joiner,
            isolator=config.command_isolator,
        )

    def join(self, first: str, second: str) -> str:
        check_template("command_joiner", self.joiner, 2)
        return fill_placeholders(self.joiner, first, second)

    def isolate(self, command: str) -> str:
        check_template("command_isolator", self.isolator, 1)
        return fill_placeholders(self.isolator, command)

    def compose(self, *commands: str) -> str:
        if not commands:
            return ""
        if len(commands) == 1:
            text = commands[0]
        else:
            text = self.isolate(reduce(self.join, commands))
        return f"{self.prefix}{text}" if self.prefix else text
