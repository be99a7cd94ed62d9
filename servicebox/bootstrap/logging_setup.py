"""Logging configuration for the service logger."""

import contextvars
import json
import logging
import sys
import uuid
from typing import Any, MutableMapping, Optional

from servicebox.domain.errors import UnknownLogLevelError

LOGGER_NAME = "servicebox"
HANDLER_NAME = "servicebox"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

EXTRA_KEYS = (
    "event",
    "client",
    "route",
    "method",
    "status_code",
    "duration_ms",
    "error_type",
    "error",
    "listen_address",
    "tls",
    "log_level",
    "json",
    "global_logger",
    "option",
    "field",
    "source",
    "path",
    "fields",
    "signal",
    "timeout_seconds",
    "remaining_workers",
    "idle_connections",
    "resource",
    "cpu_threads",
    "memory_limit_bytes",
    "max_events",
    "limit",
)


# Request id of the connection a worker thread is serving.
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "servicebox_correlation_id", default=None
)


def new_correlation_id() -> str:
    """Return a fresh request id."""
    return str(uuid.uuid4())


def current_correlation_id() -> Optional[str]:
    """Return the request id bound to the current context, if any."""
    return _correlation_id.get()


def bind_correlation_id(correlation_id: str) -> None:
    """Bind ``correlation_id`` to the current context."""
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Stamps records with the bound request id and the emitting component.

    The component is the logger name below ``servicebox.``, so records from
    ``servicebox.transport.worker`` carry ``transport.worker``.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {
            **(kwargs.get("extra") or {}),
            "correlation_id": current_correlation_id() or "-",
            "component": self.logger.name.removeprefix(f"{LOGGER_NAME}."),
        }
        return msg, kwargs


def component_logger(name: str) -> CorrelationLoggerAdapter:
    """Return the adapter for the ``servicebox.<name>`` logger."""
    return CorrelationLoggerAdapter(logging.getLogger(f"{LOGGER_NAME}.{name}"), {})


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Ensure correlation_id field exists in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter with stable key ordering for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with stable key ordering."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        for key in EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, sort_keys=True, default=str)


def parse_log_level(level_name: Optional[str], default: int) -> int:
    """Translate a level token into a logging level, raising on unknown tokens."""
    if not level_name:
        return default
    try:
        return LEVELS[level_name.lower()]
    except KeyError:
        raise UnknownLogLevelError(level_name) from None


def _build_handler(level: int, use_json: bool) -> logging.Handler:
    """Create the stdout handler for the configured logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if use_json:
        handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    handler.set_name(HANDLER_NAME)
    return handler


def _remove_service_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if handler.get_name() == HANDLER_NAME:
            logger.removeHandler(handler)
            handler.close()


def configure_logging(
    level: Optional[str] = "", use_json: bool = False, global_logger: bool = False
) -> CorrelationLoggerAdapter:
    """Configure and return the service logger.

    Structured JSON output defaults to INFO, human-readable output to DEBUG.
    With ``global_logger`` the handler is installed on the root logger so
    every library logger in the process shares it.
    """
    numeric_level = parse_log_level(
        level, logging.INFO if use_json else logging.DEBUG
    )
    handler = _build_handler(numeric_level, use_json)

    logger = logging.getLogger(LOGGER_NAME)
    root = logging.getLogger()
    logger.setLevel(numeric_level)
    _remove_service_handlers(logger)
    _remove_service_handlers(root)

    if global_logger:
        root.setLevel(numeric_level)
        root.addHandler(handler)
        logger.propagate = True
    else:
        logger.addHandler(handler)
        logger.propagate = False

    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.debug(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "log_level": logging.getLevelName(numeric_level),
            "json": use_json,
            "global_logger": global_logger,
        },
    )
    return adapter
