import logging
import sys
from typing import Any

import structlog


def configure_logging(level: int | str = logging.WARNING, json_logs: bool = False) -> None:
    """Configure structlog/standard logging bridge.

    Logs go to stderr so they never interleave with the console summaries
    printed on stdout.
    """

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr, force=True)


def bind_context(**kwargs: Any) -> None:
    """Bind contextual fields (e.g. lab name, command) for downstream logs."""

    structlog.contextvars.bind_contextvars(**kwargs)
