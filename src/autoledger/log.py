"""
autoledger - Structured logging

Every balance-mutating operation emits one structured event (event name plus
ids and amounts). Call configure_logging() once at process start; modules
obtain loggers with get_logger(__name__).
"""

import logging
import sys

import structlog

_configured = False


def configure_logging(level="INFO", json=False):
    """Configure stdlib logging and structlog processors.

    Args:
        level (str): Root log level name.
        json (bool): Render events as JSON lines instead of console output.
    """
    global _configured

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, str(level).upper(), logging.INFO),
    )

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name=None):
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)
