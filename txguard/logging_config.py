"""
Structured logging configuration using structlog.

txguard never configures logging on import. Applications that embed the
queue or batch executor call ``setup_logging()`` once at startup:

    from txguard import setup_logging
    setup_logging()            # level from TXGUARD_LOG_LEVEL

Operation context bound while an attempt runs (operation_id, attempt) is
merged into every record, including ones emitted by submitters through
stdlib ``logging``.
"""

import logging
import sys
from typing import IO, Optional

import structlog

from .config import settings

# Loggers that are chatty at INFO during receipt polling
NOISY_LOGGERS = ("httpcore", "httpx")


def setup_logging(
    log_level: Optional[str] = None,
    json_logs: Optional[bool] = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Override log level (default: settings.log_level)
        json_logs: Force JSON (True) or console (False) rendering. By default
            DEBUG renders for the console and every other level as JSON.
        stream: Output stream (default: stdout)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    if json_logs is None:
        json_logs = level != logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

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
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
