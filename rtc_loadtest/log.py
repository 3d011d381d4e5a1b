"""Logging setup shared by the harness modules."""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", json: bool = True):
    """
    Configure stdlib logging and structlog.

    Args:
        level: Root log level name (DEBUG, INFO, WARNING...).
        json: Render events as JSON lines; console rendering otherwise.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
    )
    
    # Reduce noise from transport libraries
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    logging.getLogger("selenium").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
