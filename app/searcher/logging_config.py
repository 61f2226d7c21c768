"""
Logging configuration for the bundle searcher.
"""

import json
import logging
import os
import traceback
from pathlib import Path
from typing import Any

LOGS_PATH = os.environ.get("LOGS_PATH", "logs/bundle_searcher.log")
LOGGER_NAME = "bundle_searcher"

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class SearcherLogFormatter(logging.Formatter):
    """
    Appends the structured outcome of an opportunity (passed as extra={"outcome": ...})
    as JSON, and the full traceback for ERROR and above.
    """

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        message = logging.Formatter.format(self, _without_exc_info(record))
        outcome = getattr(record, "outcome", None)
        if outcome is not None:
            message += " | " + json.dumps(outcome, sort_keys=True, default=str)
        if record.levelno >= logging.ERROR and record.exc_info:
            message += "\n" + "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return message


def _without_exc_info(record: logging.LogRecord) -> logging.LogRecord:
    # The base formatter would append the traceback on every level.
    copy = logging.makeLogRecord(record.__dict__)
    copy.exc_info = None
    copy.exc_text = None
    return copy


def setup_logger() -> logging.Logger:
    """
    Set up and configure the searcher logger.

    Returns:
        Configured logger instance with console and file handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)

    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    Path(LOGS_PATH).parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(LOGS_PATH, mode="a")

    formatter = SearcherLogFormatter()
    console_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    return logger


def global_exception_handler(exctype: type, value: BaseException, tb: Any) -> None:
    """
    Global exception handler to log uncaught exceptions.

    Args:
        exctype: The type of the exception.
        value: The exception instance.
        tb: A traceback object encapsulating the call stack.
    """
    logger = logging.getLogger(LOGGER_NAME)
    trace_str = "".join(traceback.format_exception(exctype, value, tb))
    logger.critical("Uncaught exception:\n %s", trace_str)
