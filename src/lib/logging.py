"""
Structured logging configuration for the Quit-Plan Engine.

Configures structlog to work alongside stdlib logging so that both
`logging.getLogger()` and `structlog.get_logger()` produce consistent,
structured JSON output in production and human-readable output in dev.

Usage:
    from src.lib.logging import plan_log_context, setup_logging

    setup_logging()  # Call once at application startup

    with plan_log_context(plan_id=42, action="approve", role="coach"):
        logger.info("...")  # record carries plan_id, action, role
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Keys plan_log_context may bind
PLAN_CONTEXT_KEYS: tuple[str, ...] = ("plan_id", "member_id", "action", "role")


def setup_logging() -> None:
    """
    Configure structlog and stdlib logging for the application.

    In development (QUITPLAN_DEV_MODE=1): human-readable colored console output.
    In production: JSON-formatted structured logs.
    """
    dev_mode = os.environ.get("QUITPLAN_DEV_MODE") == "1"
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if dev_mode:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdlib records (logging.getLogger) go through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    for noisy_logger in ("httpx", "httpcore", "sqlalchemy.engine", "uvicorn.access"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


@contextmanager
def plan_log_context(**context: Any) -> Iterator[None]:
    """
    Bind plan fields to every log record emitted inside the block.

    Only PLAN_CONTEXT_KEYS are accepted; None values are skipped. stdlib
    loggers pick the fields up too, because merge_contextvars runs in the
    formatter's foreign_pre_chain. Nested blocks restore the outer values.
    """
    unknown = sorted(set(context) - set(PLAN_CONTEXT_KEYS))
    if unknown:
        raise ValueError(f"Unsupported log context key(s): {', '.join(unknown)}")
    fields = {key: str(value) if key in ("action", "role") else value
              for key, value in context.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**fields):
        yield
