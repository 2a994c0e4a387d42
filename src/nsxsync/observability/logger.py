"""Structured logging setup.

Levels, finest first:
- TRACE (5): request and response bodies of hierarchical writes
- DEBUG (10): per-item store updates, diff sizes
- VERBOSE (15): one line per reconcile step
- INFO (20): reconcile outcomes and store initialization (default)
"""

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Any

import structlog

# Reconcile-scoped fields (owner uid, kind) merged into every event
_log_context: ContextVar[dict[str, Any]] = ContextVar("nsxsync_log_context", default={})

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")


def trace(log: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
    """Log at TRACE level through a stdlib logger, skipped unless TRACE is enabled."""
    if log.isEnabledFor(TRACE):
        log._log(TRACE, message, args, **kwargs)


LOG_LEVELS: dict[str, int] = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class LogContext:
    """
    Bind fields to every event logged inside the block.

    Usage:
        with LogContext(child_subnet=cr.metadata.uid):
            await service.create_or_update_child_subnet(cr)
    """

    def __init__(self, **kwargs: Any) -> None:
        self.fields = kwargs
        self.token = None

    def __enter__(self) -> "LogContext":
        merged = {**_log_context.get(), **self.fields}
        self.token = _log_context.set(merged)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.token:
            _log_context.reset(self.token)


def add_context(**kwargs: Any) -> None:
    """Bind fields for the rest of the current task."""
    _log_context.set({**_log_context.get(), **kwargs})


def clear_context(key: str) -> None:
    current = _log_context.get()
    if key in current:
        _log_context.set({k: v for k, v in current.items() if k != key})


def clear_all_context() -> None:
    _log_context.set({})


def _context_processor(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Merge the bound reconcile fields into the event."""
    context = _log_context.get()
    if context:
        event_dict.update(context)
    return event_dict


def get_log_level(level: str) -> int:
    """Numeric level for a name, INFO when unknown."""
    return LOG_LEVELS.get(level.upper(), logging.INFO)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: str | Path | None = None,
    log_filter: str | None = None,
) -> None:
    """
    Route structlog through stdlib logging.

    Args:
        level: TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR or CRITICAL
        json_logs: Render events as JSON instead of the colored console format
        log_file: Also write events to this file
        log_filter: Comma-separated module name fragments to keep below
            WARNING (e.g. "allocator,childsubnet"); all other loggers are
            raised to WARNING
    """
    log_level = get_log_level(level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(file_path))

    logging.basicConfig(format="%(message)s", level=log_level, handlers=handlers, force=True)
    logging.getLogger().setLevel(log_level)

    if log_filter:
        keep = [c.strip() for c in log_filter.split(",") if c.strip()]
        for name in list(logging.root.manager.loggerDict):
            if not any(fragment in name for fragment in keep):
                logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _context_processor,
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
