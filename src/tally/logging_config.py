"""Logging setup: structured JSON lines in production, plain text in development."""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

SERVICE_NAME = "tally"


class TallyJsonFormatter(JsonFormatter):
    """JSON formatter that stamps every record with the standard fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["name"] = record.name
        log_record["service"] = SERVICE_NAME
        if "message" not in log_record:
            log_record["message"] = record.getMessage()


def setup_logging(level: int | str = logging.INFO, format_as_json: bool = True) -> None:
    """Configure the root logger.

    Args:
        level: Logging level name or number
        format_as_json: Emit JSON lines when True, plain text otherwise
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if format_as_json:
        formatter: logging.Formatter = TallyJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
