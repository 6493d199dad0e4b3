"""Structured logging setup with JSON-lines output and redaction support.

Stdlib ``logging`` carries every record through a bounded queue to the file
(and optionally stdout) sinks. ``structlog`` decision events are rendered into
the same stdlib logger so one stream holds everything for a run.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, Literal

import structlog

from release_orchestrator.security.redaction import (
    DEFAULT_SECRET_MASKER,
    REDACTED_VALUE,
    SecretMasker,
    redact_structure,
)

JSONValue = str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

ROOT_LOGGER_NAME: Final[str] = "release_orchestrator"
RUN_LOG_FILENAME: Final[str] = "pipeline.jsonl"

# Keys promoted from the record to the top level of each JSON line.
_CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "stage")
_CORRELATION_ATTR: Final[str] = "correlation"

# Attributes every LogRecord carries; anything else was passed as ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName", _CORRELATION_ATTR}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "release_correlation", default=()
)

_active_lock = threading.Lock()
_active_handle: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how one run's log stream is written."""

    run_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    log_format: Literal["json", "text"] = "json"
    queue_size: int = 4096
    log_filename: str = RUN_LOG_FILENAME
    log_to_stdout: bool = False
    redactor: LogRedactor | None = None


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    log_to_stdout: bool | None = None,
    level: str | None = None,
) -> StructuredLoggingHandle:
    """Configure the run log stream from an ``[observability]`` mapping.

    Explicit keyword arguments win over the mapping; the mapping wins over
    built-in defaults.
    """

    section = dict(observability_config or {})
    chosen_level = level if level is not None else section.get("log_level", "INFO")
    chosen_dir = log_dir if log_dir is not None else section.get("log_dir", "logs")
    mirror = log_to_stdout if log_to_stdout is not None else section.get("log_to_stdout", False)

    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=chosen_dir if isinstance(chosen_dir, (Path, str)) else "logs",
            level=chosen_level if isinstance(chosen_level, (int, str)) else "INFO",
            log_format="text" if section.get("log_format") == "text" else "json",
            log_to_stdout=bool(mirror),
            redactor=None if section.get("redact_secrets", True) else _passthrough,
        )
    )
    configure_structlog()
    return handle


def configure_structlog() -> None:
    """Route ``structlog`` events into the stdlib logger tree.

    Event keyword arguments become record extras, so they surface under
    ``fields`` in the JSON line.
    """

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class _RunQueueHandler(logging.handlers.QueueHandler):
    """Enqueue without blocking; a full queue drops the record and counts it."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread cannot see this thread's contextvars.
        context = get_correlation_context()
        if context:
            setattr(record, _CORRELATION_ATTR, context)
        return super().prepare(record)  # type: ignore[no-any-return]

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLineFormatter(logging.Formatter):
    """One canonical JSON object per record, with run correlation at top level."""

    def __init__(self, *, redactor: LogRedactor, run_id: str) -> None:
        super().__init__()
        self._redactor = redactor
        self._run_id = run_id

    def build_event(self, record: logging.LogRecord) -> dict[str, JSONValue]:
        redact = self._redactor
        event: dict[str, JSONValue] = {
            "timestamp": _timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": _as_line(redact(record.getMessage())),
        }
        event.update(sorted(self._correlation_for(record).items()))

        extras = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
            and key not in _CORRELATION_KEYS
            and not key.startswith("_")
        }
        if extras:
            event["fields"] = redact(extras)
        if record.exc_info is not None:
            event["exception"] = _as_line(redact(self.formatException(record.exc_info)))
        return event

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            self.build_event(record), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )

    def _correlation_for(self, record: logging.LogRecord) -> dict[str, str]:
        merged = {"run_id": self._run_id}
        bound = getattr(record, _CORRELATION_ATTR, None)
        if isinstance(bound, Mapping):
            merged.update(
                (key, value.strip())
                for key, value in bound.items()
                if isinstance(key, str) and isinstance(value, str) and value.strip()
            )
        for key in _CORRELATION_KEYS:
            explicit = getattr(record, key, None)
            if isinstance(explicit, str) and explicit.strip():
                merged[key] = explicit.strip()
        return merged


class _TextLineFormatter(_JsonLineFormatter):
    """Console rendering: ``<ts> <LEVEL> [stage] event key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        event = self.build_event(record)
        parts = [str(event["timestamp"]), f"{record.levelname:<7}"]
        if isinstance(event.get("stage"), str):
            parts.append(f"[{event['stage']}]")
        parts.append(str(event["message"]))
        fields = event.get("fields")
        if isinstance(fields, dict):
            parts.extend(
                f"{key}={json.dumps(value, ensure_ascii=False)}"
                for key, value in sorted(fields.items())
            )
        exception = event.get("exception")
        line = " ".join(parts)
        return f"{line}\n{exception}" if isinstance(exception, str) else line


class StructuredLoggingHandle:
    """A live run log stream: the queue, its listener thread, and the sinks."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        log_path: Path,
        queue_handler: _RunQueueHandler,
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        """Wait for the listener to drain queued records, then flush the sinks."""

        pending: queue.Queue[logging.LogRecord] = self._listener.queue  # type: ignore[assignment]
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._listener.handlers:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._listener.handlers:
                sink.close()
            self._closed = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Open ``<base_log_dir>/<run_id>/<log_filename>`` as the run's log stream.

    Any previously active stream is shut down first; only one run logs at a
    time.
    """

    global _active_handle
    shutdown_logging()

    run_id = config.run_id.strip()
    if not run_id:
        raise ValueError("run_id must not be empty")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    if Path(config.log_filename).name != config.log_filename:
        raise ValueError("log_filename must not include path separators")
    level = _parse_log_level(config.level)

    log_path = Path(config.base_log_dir) / run_id / config.log_filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    redactor = config.redactor if config.redactor is not None else make_log_redactor()
    json_formatter = _JsonLineFormatter(redactor=redactor, run_id=run_id)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    sinks[0].setFormatter(json_formatter)
    if config.log_to_stdout:
        console = logging.StreamHandler()
        console.setFormatter(
            _TextLineFormatter(redactor=redactor, run_id=run_id)
            if config.log_format == "text"
            else json_formatter
        )
        sinks.append(console)
    for sink in sinks:
        sink.setLevel(level)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    queue_handler = _RunQueueHandler(queue.Queue(maxsize=config.queue_size))
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(
        queue_handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
    )
    with _active_lock:
        _active_handle = handle
    _hook_atexit()
    return handle


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    """Drain and close ``handle`` (default: the active stream). Safe to repeat."""

    global _active_handle
    target = handle if handle is not None else get_active_logging_handle()
    if target is None:
        return
    target.shutdown(timeout_seconds=timeout_seconds)
    with _active_lock:
        if _active_handle is target:
            _active_handle = None


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active_handle


def get_correlation_context() -> dict[str, str]:
    """Return the correlation fields bound in the current context."""

    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged inside the block.

    Passing ``None`` unbinds a key for the duration of the block.
    """

    state = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
        elif not value.strip():
            raise ValueError(f"correlation value for {key!r} must not be empty")
        else:
            state[key] = value.strip()
    token = _correlation.set(tuple(state.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


def make_log_redactor(masker: SecretMasker | None = None) -> LogRedactor:
    """Deep redaction of sensitive keys, secret patterns, and live credential values."""

    active = masker if masker is not None else DEFAULT_SECRET_MASKER

    def redactor(value: JSONValue) -> JSONValue:
        return _to_json(redact_structure(value, masker=active))

    return redactor


def _hook_atexit() -> None:
    global _atexit_hooked
    if not _atexit_hooked:
        atexit.register(shutdown_logging)
        _atexit_hooked = True


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if not isinstance(parsed, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return parsed


def _timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_line(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    return "" if value is None else json.dumps(value, sort_keys=True, ensure_ascii=False)


def _to_json(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else REDACTED_VALUE
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, datetime):
        return _timestamp(value.timestamp())
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    return str(value)


def _passthrough(value: JSONValue) -> JSONValue:
    return value


__all__ = [
    "JSONValue",
    "LogRedactor",
    "LoggingConfig",
    "ROOT_LOGGER_NAME",
    "RUN_LOG_FILENAME",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "make_log_redactor",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
