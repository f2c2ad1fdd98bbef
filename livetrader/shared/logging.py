"""
Logging configuration for the application.

One pipe-separated line per record on stdout.
Order intents and balances may be logged; credentials never are.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_QUIET_LOGGERS = (
    "uvicorn.access",
    "apscheduler.scheduler",
    "apscheduler.executors.default",
    "httpx",
)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the service.

    Args:
        level: The log level string (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    # Scheduler emits a line per job run.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
