#!/usr/bin/env python3
"""
Event Log

One line per event, written through the standard logging module:

    [2026-10-19 10:18:03.127][REMOVE] Removed Directory C:\\Python314

The event type travels on the record as ``extra={"event": ...}``; records
logged without one fall back to their level name.
"""

import logging
import pathlib
from datetime import datetime
from typing import Optional

from auxiliary import file_stamp, format_timestamp

LOGGER_NAME = "exaleipsis"

FOUND = "FOUND"
REMOVE = "REMOVE"
ERROR = "ERROR"
SKIP = "SKIP"
PROTECT = "PROTECT"
VERIFY = "VERIFY"
SECTION = "SECTION"
BACKUP = "BACKUP"
INFO = "INFO"
WARN = "WARN"

logger = logging.getLogger(LOGGER_NAME)


class EventFormatter(logging.Formatter):
    """Formats records as [timestamp with milliseconds][EVENT] message"""

    def format(self, record: logging.LogRecord) -> str:
        event = getattr(record, "event", None) or record.levelname
        stamp = format_timestamp(datetime.fromtimestamp(record.created))
        line = f"[{stamp}][{event}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(output_dir: pathlib.Path, verbose: bool = False) -> pathlib.Path:
    """Attach a file handler for this run and return the log file path

    Failing to open the log is a setup fault and propagates.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    log_path = output_dir / f"exaleipsis_{file_stamp()}.log"

    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(EventFormatter())

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return log_path


def shutdown_logging():
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
        logger.removeHandler(handler)


def log_event(event: str, message: str, level: int = logging.INFO, exc_info: Optional[BaseException] = None):
    """Write one event line"""
    logger.log(level, message, extra={"event": event}, exc_info=exc_info)
