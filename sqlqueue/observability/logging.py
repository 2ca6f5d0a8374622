"""
Structured logging for queue processes.

Every process (background server, worker, inspection API) logs through
structlog. Records carry the store's table prefix and, inside a traced
operation such as a dequeue, the active trace and span ids.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from sqlqueue.config import Settings, get_settings

# Libraries whose INFO output drowns out queue events
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "uvicorn.access")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach trace_id and span_id when a span is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def store_context_processor(prefix: str) -> structlog.types.Processor:
    """
    Build a processor tagging records with the store's table prefix.

    Several stores can share one database under different prefixes; the
    tag keeps their log streams apart. An empty prefix adds nothing.
    """

    def add_store_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        if prefix:
            event_dict.setdefault("store", prefix)
        return event_dict

    return add_store_context


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structlog and route standard library records through it.

    Safe to call more than once; the root handler is replaced, not added.

    Args:
        settings: Source of log_level, log_format and table_prefix.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        store_context_processor(settings.table_prefix),
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderers: list[structlog.types.Processor]
    if settings.log_format == "json":
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *renderers,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # SQL echo is opt-in through log_level=DEBUG on the engine itself
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, usually for ``__name__``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind values to every subsequent record in this context.

    The entry points bind ``component`` so the server's and the worker's
    output can be told apart when collected together.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
