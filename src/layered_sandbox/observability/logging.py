"""Structured logging setup with text or JSON-lines output and redaction support."""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import math
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path, PurePath
from typing import Final, Literal, TextIO

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]
LogFormat = Literal["text", "json"]

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOGGER_NAME: Final[str] = "layered_sandbox"
_TEXT_FORMAT: Final[str] = "%(levelname)s %(name)s: %(message)s"

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "profile", "work_root")

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_API_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_-]{12,}\b")

_RESERVED_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", None, None))
) | {"message", "asctime", "taskName", "correlation", *_CORRELATION_KEYS}

_CorrelationState = tuple[tuple[str, str], ...]
_CORRELATION_CONTEXT: contextvars.ContextVar[_CorrelationState] = contextvars.ContextVar(
    "layered_sandbox_correlation", default=()
)

_ACTIVE_HANDLE_LOCK = threading.Lock()
_ACTIVE_HANDLE: LoggingHandle | None = None
_ATEXIT_REGISTERED = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for one launcher run's logging."""

    run_id: str
    logger_name: str = _DEFAULT_LOGGER_NAME
    level: int | str = "WARNING"
    log_format: LogFormat = "text"
    log_file: Path | str | None = None
    stream: TextIO | None = None
    redactor: LogRedactor | None = None


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    level: int | str | None = None,
    stream: TextIO | None = None,
    logger_name: str = _DEFAULT_LOGGER_NAME,
) -> logging.Logger:
    """Configure logging from the ``[observability]`` section and return the logger.

    ``level`` overrides the configured level (the ``--log-level`` flag).
    Diagnostics go to stderr so the sandboxed command owns stdout.
    """

    cfg = dict(observability_config or {})
    raw_level = level if level is not None else cfg.get("log_level", "WARNING")
    resolved_level: int | str = raw_level if isinstance(raw_level, (int, str)) else "WARNING"
    raw_format = cfg.get("log_format", "text")
    log_format: LogFormat = "json" if raw_format == "json" else "text"
    raw_file = cfg.get("log_file")
    log_file = raw_file if isinstance(raw_file, (str, Path)) and str(raw_file).strip() else None

    handle = configure_logging(
        LoggingConfig(
            run_id=run_id,
            logger_name=logger_name,
            level=resolved_level,
            log_format=log_format,
            log_file=log_file,
            stream=stream,
        )
    )
    return handle.logger


class _CorrelationFilter(logging.Filter):
    """Attach the active correlation context to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_correlation_context()
        if context:
            existing = getattr(record, "correlation", None)
            if isinstance(existing, Mapping):
                context.update(
                    {str(key): str(value) for key, value in existing.items() if value is not None}
                )
            record.correlation = context
        return True


class _JsonLineFormatter(logging.Formatter):
    """Formatter that emits canonical JSON objects per log line."""

    def __init__(
        self,
        *,
        redactor: LogRedactor,
        base_context: Mapping[str, str],
    ) -> None:
        super().__init__()
        self._redactor = redactor
        self._base_context = dict(base_context)

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _iso8601z_from_epoch(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": _coerce_log_message(
                self._redactor(_normalize_json_value(record.getMessage()))
            ),
        }

        correlation = _merge_correlation_context(record, self._base_context)
        for key, value in sorted(correlation.items()):
            event[key] = value

        extras = _extract_extra_fields(record)
        if extras:
            event["fields"] = self._redactor(_normalize_json_value(extras))

        if record.exc_info is not None:
            event["exception"] = _coerce_log_message(
                self._redactor(_normalize_json_value(self.formatException(record.exc_info)))
            )

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _RedactingTextFormatter(logging.Formatter):
    """Human-readable single-line formatter with the same redaction as JSON output."""

    def __init__(self, *, redactor: LogRedactor) -> None:
        super().__init__(_TEXT_FORMAT)
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        rendered = super().format(record)
        return _coerce_log_message(self._redactor(rendered))


class LoggingHandle:
    """Runtime handle for an active logging setup."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        handlers: tuple[logging.Handler, ...],
        log_path: Path | None,
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._handlers = handlers
        self._shutdown_lock = threading.Lock()
        self._is_shutdown = False

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def flush(self) -> None:
        for handler in self._handlers:
            handler.flush()

    def shutdown(self) -> None:
        with self._shutdown_lock:
            if self._is_shutdown:
                return
            for handler in self._handlers:
                handler.flush()
                self.logger.removeHandler(handler)
                handler.close()
            self.logger.propagate = True
            self._is_shutdown = True


def configure_logging(config: LoggingConfig) -> LoggingHandle:
    """Install stream (and optional file) handlers for a single run."""

    _shutdown_previous_active_handle()

    run_id = _validate_run_id(config.run_id)
    level = _parse_log_level(config.level)
    redactor = config.redactor or default_log_redactor
    json_formatter = _JsonLineFormatter(redactor=redactor, base_context={"run_id": run_id})
    correlation_filter = _CorrelationFilter()

    stream_handler = logging.StreamHandler(config.stream or sys.stderr)
    stream_handler.setLevel(level)
    if config.log_format == "json":
        stream_handler.setFormatter(json_formatter)
    else:
        stream_handler.setFormatter(_RedactingTextFormatter(redactor=redactor))
    stream_handler.addFilter(correlation_filter)
    handlers: list[logging.Handler] = [stream_handler]

    log_path: Path | None = None
    if config.log_file is not None:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        # The file sink records everything down to DEBUG regardless of the console level.
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(json_formatter)
        file_handler.addFilter(correlation_filter)
        handlers.append(file_handler)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(logging.DEBUG if log_path is not None else level)
    logger.propagate = False

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        logger.addHandler(handler)

    handle = LoggingHandle(
        logger=logger, run_id=run_id, handlers=tuple(handlers), log_path=log_path
    )

    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        _ACTIVE_HANDLE = handle

    _register_atexit_shutdown()
    return handle


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Flush and detach all handlers of the active (or given) setup."""

    resolved = handle if handle is not None else get_active_logging_handle()
    if resolved is None:
        return

    resolved.shutdown()

    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        if _ACTIVE_HANDLE is resolved:
            _ACTIVE_HANDLE = None


def get_active_logging_handle() -> LoggingHandle | None:
    """Return the currently active handle, if one exists."""
    with _ACTIVE_HANDLE_LOCK:
        return _ACTIVE_HANDLE


def get_correlation_context() -> dict[str, str]:
    """Return the current correlation context as a plain dictionary."""
    return dict(_CORRELATION_CONTEXT.get())


def set_correlation_fields(**fields: str | None) -> contextvars.Token[_CorrelationState]:
    """Set correlation fields for the active context and return a reset token."""
    state = get_correlation_context()
    for key, value in fields.items():
        key_name = key.strip()
        if not key_name:
            raise ValueError("correlation key must not be empty")
        if value is None:
            state.pop(key_name, None)
            continue
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"correlation value for {key_name!r} must be a non-empty string")
        state[key_name] = value.strip()
    return _CORRELATION_CONTEXT.set(tuple(state.items()))


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields for log records in scope."""
    token = set_correlation_fields(**fields)
    try:
        yield
    finally:
        _CORRELATION_CONTEXT.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Deep redaction of secret-looking keys and inline credentials."""
    return _redact_value(value, key_context=None)


def _shutdown_previous_active_handle() -> None:
    existing = get_active_logging_handle()
    if existing is not None:
        existing.shutdown()

    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        _ACTIVE_HANDLE = None


def _register_atexit_shutdown() -> None:
    global _ATEXIT_REGISTERED
    if _ATEXIT_REGISTERED:
        return
    atexit.register(shutdown_logging)
    _ATEXIT_REGISTERED = True


def _validate_run_id(run_id: str) -> str:
    normalized = run_id.strip() if isinstance(run_id, str) else ""
    if not normalized:
        raise ValueError(f"run_id must be a non-empty string, got {run_id!r}")
    return normalized


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(str(value).strip().upper())
    if not isinstance(parsed, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return parsed


def _iso8601z_from_epoch(epoch_seconds: float) -> str:
    timestamp = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _coerce_log_message(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _merge_correlation_context(
    record: logging.LogRecord,
    base_context: Mapping[str, str],
) -> dict[str, str]:
    candidates = {key: getattr(record, key, None) for key in _CORRELATION_KEYS}
    bound = getattr(record, "correlation", None)
    if isinstance(bound, Mapping):
        candidates.update(bound)
    merged = dict(base_context)
    merged.update(
        (str(key), value.strip())
        for key, value in candidates.items()
        if isinstance(value, str) and value.strip()
    )
    return merged


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, JSONValue]:
    return {
        key: _normalize_json_value(value)
        for key, value in vars(record).items()
        if key not in _RESERVED_RECORD_FIELDS and not key.startswith("_")
    }


def _normalize_json_value(value: object) -> JSONValue:
    """Reduce log extras (paths, argv tuples, plans, enums) to JSON values."""

    if isinstance(value, Enum):
        return _normalize_json_value(value.value)
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, PurePath):
        return value.as_posix()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return _normalize_json_value(to_dict())
    if isinstance(value, Mapping):
        return {str(key): _normalize_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_json_value(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(str(_normalize_json_value(item)) for item in value)
    return repr(value)


def _redact_value(value: JSONValue, *, key_context: str | None) -> JSONValue:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE

    if isinstance(value, str):
        return _redact_string(value)

    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]

    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=key) for key, item in value.items()}

    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", text)
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", redacted
    )
    return _API_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)


__all__ = [
    "JSONScalar",
    "JSONValue",
    "LogFormat",
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "set_correlation_fields",
    "setup_logging",
    "shutdown_logging",
]
