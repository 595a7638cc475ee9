import logging
import os

import structlog

LOG_LEVEL_ENV_VAR = "BATCHLIFT_LOG_LEVEL"


def setup_logging(*, level: str | None = None, colors: bool = True) -> None:
    """
    Configure structlog on top of the stdlib ``batchlift`` logger.

    Parameters
    ----------
    level : str | None, optional
        Log level name. Falls back to ``BATCHLIFT_LOG_LEVEL``, then ``WARNING``.
    colors : bool, optional
        Render colored console output.
    """
    level_name = (level or os.getenv(LOG_LEVEL_ENV_VAR) or "WARNING").upper()
    logging.getLogger(name="batchlift").setLevel(level=level_name)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # Critical for context vars
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
