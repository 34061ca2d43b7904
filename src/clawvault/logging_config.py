"""Structured logging configuration using structlog.

JSON output in production, colored console output in development. Escrow
events carry USDC amounts as Decimal, deadlines as aware datetimes and
statuses as StrEnum members; ``render_domain_values`` turns them into plain
strings before rendering so JSON lines hold "100.000000" rather than
"Decimal('100.000000')". The sweeper binds ``sweep_id`` with
``sweep_context`` so every line of one sweep cycle can be correlated.

Usage:
    from clawvault.logging_config import setup_logging, get_logger
    setup_logging(log_level="DEBUG", json_logs=False)
    logger = get_logger(__name__)
    logger.info("escrow.created", escrow_id="esc_abc", amount="100.00")
"""

from __future__ import annotations

import enum
import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator, MutableMapping

    from clawvault.config import Settings

_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "httpx", "httpcore")


def _plain(value: object) -> object:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list | tuple):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def render_domain_values(
    logger: object, method_name: str, event_dict: MutableMapping[str, object]
) -> MutableMapping[str, object]:
    """Processor: stringify Decimal amounts, datetimes and enum members."""
    for key, value in event_dict.items():
        if key != "exc_info":
            event_dict[key] = _plain(value)
    return event_dict


@contextmanager
def sweep_context(sweep_id: int) -> Iterator[None]:
    """Bind ``sweep_id`` to every log line emitted inside one sweep cycle."""
    with structlog.contextvars.bound_contextvars(sweep_id=sweep_id):
        yield


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Configure structlog and route it through the stdlib root logger.

    Args:
        log_level: Standard Python log level string (DEBUG, INFO, WARNING, etc.)
        json_logs: If True, render JSON lines. If False, colored console output.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        render_domain_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for noisy_logger in _NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def setup_logging_from_settings(settings: Settings) -> None:
    """Configure logging from application settings (JSON outside development)."""
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Optional logger name, usually ``__name__``.

    Returns:
        A bound structlog logger with context variable support.
    """
    return structlog.get_logger(name)
