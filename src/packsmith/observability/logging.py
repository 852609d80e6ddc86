"""Structured logging setup: structlog routed through stdlib with JSON-lines output."""

from __future__ import annotations

import json
import logging
import math
import sys
import threading
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_DEFAULT_LOGGER_NAME: Final[str] = "packsmith"

_STANDARD_LOG_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
    }
)

# Passed through to Logger._log as keyword arguments rather than extras.
_LOG_CALL_KWARGS: Final[frozenset[str]] = frozenset({"exc_info", "stack_info"})

_ACTIVE_HANDLE_LOCK = threading.Lock()
_ACTIVE_HANDLE: LoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: int | str = "INFO"
    log_file: Path | str | None = None
    json_output: bool = True
    log_to_stderr: bool = True
    logger_name: str = _DEFAULT_LOGGER_NAME


class _JsonLineFormatter(logging.Formatter):
    """Formatter that emits one canonical JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _iso8601z_from_epoch(record.created),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        extras = _extract_extra_fields(record)
        if extras:
            event["fields"] = extras
        if record.exc_info is not None:
            event["exception"] = self.formatException(record.exc_info)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = _extract_extra_fields(record)
        rendered = " ".join(
            f"{key}={json.dumps(value, sort_keys=True, ensure_ascii=False)}"
            for key, value in sorted(extras.items())
        )
        line = (
            f"{_iso8601z_from_epoch(record.created)} {record.levelname:<7} "
            f"{record.name}: {record.getMessage()}"
        )
        return f"{line} {rendered}" if rendered else line


class LoggingHandle:
    """Runtime handle for an active logging setup."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        handlers: tuple[logging.Handler, ...],
        log_path: Path | None,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._handlers = handlers
        self._is_shutdown = False

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    @property
    def handlers(self) -> tuple[logging.Handler, ...]:
        return self._handlers

    def flush(self) -> None:
        for handler in self._handlers:
            handler.flush()

    def shutdown(self) -> None:
        if self._is_shutdown:
            return
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.flush()
            handler.close()
        self._is_shutdown = True


def setup_logging(
    level: int | str = "INFO",
    log_file: Path | str | None = None,
    json_output: bool = True,
    *,
    log_to_stderr: bool = True,
) -> LoggingHandle:
    """Configure stdlib handlers and route structlog through them.

    Parameters
    ----------
    level:
        Minimum level name or number.
    log_file:
        Optional path for a JSON-lines (or text) log file; parent dirs are created.
    json_output:
        Emit JSON lines when true, a compact ``key=value`` text form otherwise.
    """

    return setup_structured_logging(
        LoggingConfig(
            level=level,
            log_file=log_file,
            json_output=json_output,
            log_to_stderr=log_to_stderr,
        )
    )


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    global _ACTIVE_HANDLE

    shutdown_logging()
    level = _parse_log_level(config.level)
    formatter: logging.Formatter = _JsonLineFormatter() if config.json_output else _TextFormatter()

    handlers: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_file is not None:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stderr:
        handlers.append(logging.StreamHandler(sys.stderr))

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            _rename_reserved_keys,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handle = LoggingHandle(logger=logger, handlers=tuple(handlers), log_path=log_path)
    with _ACTIVE_HANDLE_LOCK:
        _ACTIVE_HANDLE = handle
    return handle


def shutdown_logging() -> None:
    """Detach handlers from the active setup and restore structlog defaults."""

    global _ACTIVE_HANDLE

    with _ACTIVE_HANDLE_LOCK:
        handle = _ACTIVE_HANDLE
        _ACTIVE_HANDLE = None
    if handle is not None:
        handle.shutdown()
        structlog.reset_defaults()


def get_active_logging_handle() -> LoggingHandle | None:
    with _ACTIVE_HANDLE_LOCK:
        return _ACTIVE_HANDLE


def _rename_reserved_keys(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    # stdlib refuses extras that shadow LogRecord attributes.
    del logger, method_name
    for key in [
        key
        for key in event_dict
        if key in _STANDARD_LOG_RECORD_FIELDS and key not in _LOG_CALL_KWARGS
    ]:
        event_dict[f"{key}_"] = event_dict.pop(key)
    return event_dict


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {value!r}")
    return resolved


def _iso8601z_from_epoch(epoch_seconds: float) -> str:
    timestamp = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, JSONValue]:
    fields: dict[str, JSONValue] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_LOG_RECORD_FIELDS or key.startswith("_"):
            continue
        fields[key] = _normalize_json_value(value)
    return fields


def _normalize_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _normalize_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_json_value(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_normalize_json_value(item) for item in value), key=repr)
    return repr(value)


__all__ = [
    "LoggingConfig",
    "LoggingHandle",
    "get_active_logging_handle",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
