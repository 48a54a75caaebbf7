"""Logging setup for the runner service."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import sys
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

PACKAGE_LOGGER = "playground_runner"


class RunnerJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with service and UTC timestamp."""

    def __init__(self, service_name: str = "playground-runner") -> None:
        super().__init__(fmt="%(levelname)s %(name)s %(message)s")
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        log_record["service"] = self.service_name
        log_record["level"] = record.levelname.lower()


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(RunnerJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    return logger
