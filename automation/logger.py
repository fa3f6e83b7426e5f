"""
Centralized logging configuration.

Every record carries the operation ID of the current run, so all lines
from one workflow run can be grepped together. On a runner the console
formatter also turns warnings and errors into job annotations.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from automation.constants import (
    EXCLUDED_EXTRA_FIELDS,
    JSON_DATEFMT,
    LOG_BACKUP_COUNT,
    LOG_MAX_BYTES,
    RESERVED_ATTRS,
    STRUCT_CONSOLE_FMT,
    STRUCT_DATEFMT,
    STRUCT_FILE_FMT,
    TEXT_CONSOLE_FMT,
    TEXT_DATEFMT,
    TEXT_FILE_FMT,
)

_operation_id: ContextVar[str | None] = ContextVar("operation_id", default=None)

NO_OPERATION_ID = "--------"
THIRD_PARTY_LOGGERS = ("kubernetes", "urllib3", "github")


def set_operation_id(operation_id: str | None = None) -> str:
    """
    Set the operation ID stamped on log records.

    Args:
        operation_id: Usually the GitHub run ID. A short random ID is
            generated when omitted.

    Returns:
        The operation ID that was set
    """
    if operation_id is None:
        operation_id = uuid.uuid4().hex[:8]

    _operation_id.set(operation_id)
    return operation_id


def get_operation_id() -> str | None:
    return _operation_id.get()


def clear_operation_id() -> None:
    _operation_id.set(None)


class BaseFormatter(logging.Formatter):
    """
    Adds `operation_id` and `extra_fields` to each record before formatting.

    `extra_fields` holds whatever the caller passed through extra={}.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.operation_id = get_operation_id() or NO_OPERATION_ID
        record.extra_fields = self._extract_extra_fields(record)
        return super().format(record)

    def _extract_extra_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        return {
            key: value
            for key, value in record.__dict__.items()
            if key not in RESERVED_ATTRS
            and key not in EXCLUDED_EXTRA_FIELDS
            and not key.startswith("_")
        }


class TextFormatter(BaseFormatter):
    """Plain text; extra fields are dropped."""


class StructuredFormatter(BaseFormatter):
    """Text followed by ` | key=value ...` for each extra field."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if not record.extra_fields:
            return message

        pairs = " ".join(f"{key}={value}" for key, value in record.extra_fields.items())
        return f"{message} | {pairs}"


class JSONFormatter(BaseFormatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        super().format(record)

        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "operation_id": record.operation_id,
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            **record.extra_fields,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class GitHubActionsFormatter(StructuredFormatter):
    """
    Structured formatter that prefixes workflow commands, so the runner
    renders warnings and errors as annotations on the job.
    """

    COMMANDS = {
        logging.DEBUG: "::debug::",
        logging.WARNING: "::warning::",
        logging.ERROR: "::error::",
        logging.CRITICAL: "::error::",
    }

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        command = self.COMMANDS.get(record.levelno, "")
        if not command:
            return message
        # Workflow commands are single-line; the runner decodes %0A
        return command + message.replace("%", "%25").replace("\n", "%0A")


def _build_formatters(log_format: str) -> tuple[logging.Formatter, logging.Formatter]:
    # (console, file); file output never carries workflow commands
    if log_format == "json":
        return JSONFormatter(datefmt=JSON_DATEFMT), JSONFormatter(datefmt=JSON_DATEFMT)

    structured_file = StructuredFormatter(fmt=STRUCT_FILE_FMT, datefmt=STRUCT_DATEFMT)
    if log_format == "structured":
        return StructuredFormatter(fmt=STRUCT_CONSOLE_FMT, datefmt=STRUCT_DATEFMT), structured_file
    if log_format == "github":
        return GitHubActionsFormatter(fmt=STRUCT_CONSOLE_FMT, datefmt=STRUCT_DATEFMT), structured_file

    return TextFormatter(fmt=TEXT_CONSOLE_FMT), TextFormatter(fmt=TEXT_FILE_FMT, datefmt=TEXT_DATEFMT)


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_format: str = "text",
) -> None:
    """
    Configure the root logger. Call once at startup; calling again
    replaces the previous handlers.

    Args:
        level: Console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for a rotating log file, always at DEBUG
        log_format: text, structured, json, or github
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    console_formatter, file_formatter = _build_formatters(log_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; use as `logger = get_logger(__name__)`."""
    return logging.getLogger(name)
