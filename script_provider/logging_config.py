"""Logging configuration for the provider and captured command output."""
from __future__ import annotations

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from typing import Any, Dict

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOGGER_NAME = "script_provider"
COMMAND_LOGGER_NAME = "script_provider.command"

# Attributes present on every LogRecord; anything else came in through ``extra``.
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}

_LEVEL_NAMES = {
    TRACE: "trace",
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the structured fields attached to ``record`` via ``extra``."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line with hclog-style keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "@level": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "@module": record.name,
            "@message": record.getMessage(),
        }
        payload.update(record_fields(record))
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str)


class TextFormatter(logging.Formatter):
    """Plain formatter that prefixes captured lines with their tags."""

    def format(self, record: logging.LogRecord) -> str:
        fields = record_fields(record)
        tags = [str(fields[key]) for key in ("provider", "operation", "stream") if fields.get(key)]
        line = super().format(record)
        if tags:
            return f"[{'/'.join(tags)}] {line}"
        return line


def use_json_format() -> bool:
    """JSON output unless running under the acceptance test harness."""
    return os.environ.get("TF_ACC", "") == ""


def get_logging_config(level: int = logging.WARNING, json_format: bool = True) -> Dict[str, Any]:
    """Get the ``dictConfig`` mapping for the provider loggers."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "text": {
                "()": TextFormatter,
                "fmt": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json" if json_format else "text",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            LOGGER_NAME: {
                "handlers": ["default"],
                "level": level,
                "propagate": False,
            },
            "core": {
                "handlers": ["default"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(level: int = logging.WARNING, json_format: bool | None = None) -> None:
    """Apply the provider logging configuration."""
    if json_format is None:
        json_format = use_json_format()
    logging.config.dictConfig(get_logging_config(level, json_format))
