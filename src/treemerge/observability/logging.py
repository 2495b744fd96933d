"""
treemerge: structured logging

File: src/treemerge/observability/logging.py

Purpose
- Route component events (emitted through ``structlog``) and plain stdlib
  records into one JSON-lines file per run.

Functional requirements
- Emitting threads never block on disk I/O: records pass through a bounded
  queue and are dropped, and counted, when it is full.
- Every line carries ``run_id``; lines emitted inside a merge carry ``merge_id``.
- Rendering happens once, on the listener thread, with structlog's
  ``ProcessorFormatter``.
"""

from __future__ import annotations

import atexit
import contextvars
import copy
import logging
import logging.handlers
import queue
import sys
import threading
import time
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from treemerge.constants import DEFAULT_LOG_FILENAME, DEFAULT_LOGGER_NAME

_DEFAULT_QUEUE_SIZE: Final[int] = 4096

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "treemerge_correlation", default=()
)

_STATE_LOCK = threading.Lock()
_ACTIVE_HANDLE: StructuredLoggingHandle | None = None
_ATEXIT_HOOKED = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how one run writes its structured log."""

    run_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = _DEFAULT_QUEUE_SIZE
    log_filename: str = DEFAULT_LOG_FILENAME
    log_to_stdout: bool = False


class _CorrelationInjector:
    """structlog processor adding run and merge correlation fields to each event."""

    __slots__ = ("_base",)

    def __init__(self, base: Mapping[str, str]) -> None:
        self._base = dict(base)

    def __call__(
        self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        context = dict(self._base)
        captured = event_dict.pop("correlation", None)
        record = event_dict.get("_record")
        if captured is None and record is not None:
            captured = getattr(record, "correlation", None)
        if isinstance(captured, Mapping):
            context.update(captured)
        # Explicitly bound values win over the ambient scope.
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that drops records instead of blocking when the queue is full."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Keep structlog's event dict intact for the sink formatter; only pin
        # the correlation scope of the emitting thread or task.
        prepared = copy.copy(record)
        context = get_correlation_context()
        if context:
            prepared.correlation = context
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class StructuredLoggingHandle:
    """Live logging pipeline for one run; ``shutdown`` drains and closes it."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        log_path: Path,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._closed = threading.Event()
        self._close_lock = threading.Lock()

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed.is_set()

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        """Wait until queued records reach the sinks, up to ``timeout_seconds``."""
        pending: queue.Queue[Any] = self._queue_handler.queue  # type: ignore[assignment]
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._close_lock:
            if self._closed.is_set():
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed.set()


def configure_structlog() -> None:
    """Send ``structlog`` events through stdlib logging to the active JSON sink."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Start the queue-backed JSON-lines pipeline for ``config.run_id``."""

    shutdown_logging()

    run_id = _require_text(config.run_id, "run_id")
    logger_name = _require_text(config.logger_name, "logger_name")
    log_filename = _require_text(config.log_filename, "log_filename")
    if Path(log_filename).name != log_filename:
        raise ValueError("log_filename must not include path separators")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _parse_log_level(config.level)

    log_path = Path(config.base_log_dir) / run_id / log_filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _build_formatter(run_id)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler(sys.stdout))
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )

    global _ACTIVE_HANDLE, _ATEXIT_HOOKED
    with _STATE_LOCK:
        _ACTIVE_HANDLE = handle
        if not _ATEXIT_HOOKED:
            atexit.register(shutdown_logging)
            _ATEXIT_HOOKED = True
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = DEFAULT_LOGGER_NAME,
) -> logging.Logger:
    """
    Configure logging from an ``[observability]`` table and return the stdlib logger.

    ``log_dir`` overrides the table's ``log_dir``. structlog is configured to
    feed the same pipeline, so component loggers need no further setup.
    """

    table = dict(observability_config or {})
    level = table.get("log_level", "INFO")
    base_dir = log_dir if log_dir is not None else table.get("log_dir", "logs")
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=base_dir if isinstance(base_dir, (Path, str)) else "logs",
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=bool(table.get("log_to_stdout", False)),
        )
    )
    configure_structlog()
    return handle.logger


def flush_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    target = handle if handle is not None else get_active_logging_handle()
    if target is not None:
        target.flush(timeout_seconds=timeout_seconds)


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    """Drain and close ``handle`` (default: the active pipeline). Safe to call twice."""

    global _ACTIVE_HANDLE
    with _STATE_LOCK:
        target = handle if handle is not None else _ACTIVE_HANDLE
        if target is not None and target is _ACTIVE_HANDLE:
            _ACTIVE_HANDLE = None
    if target is not None:
        target.shutdown(timeout_seconds=timeout_seconds)


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _STATE_LOCK:
        return _ACTIVE_HANDLE


def get_correlation_context() -> dict[str, str]:
    """Return the correlation fields bound in the current context."""
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for the duration of the block; ``None`` unbinds a key."""
    state = get_correlation_context()
    for key, value in fields.items():
        name = _require_text(key, "correlation key")
        if value is None:
            state.pop(name, None)
        else:
            state[name] = _require_text(value, "correlation value")
    token = _CORRELATION.set(tuple(state.items()))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def _build_formatter(run_id: str) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.ExtraAdder()],
        processors=[
            _CorrelationInjector({"run_id": run_id}),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(sort_keys=True, ensure_ascii=False, default=str),
        ],
    )


def _require_text(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {type(value).__name__}")
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must not be empty")
    return stripped


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        resolved = logging.getLevelNamesMapping().get(value.strip().upper())
        if resolved is not None:
            return resolved
    raise ValueError(f"unsupported logging level {value!r}")


__all__ = [
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
