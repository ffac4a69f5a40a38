"""Console and rotating JSON-file logging tagged with task and resource context."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Any

from .config import AppConfig
from .errors import PartialCycleError, SyncError

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-7s | %(task)-8s | %(name)s | %(message)s"
CONSOLE_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_RETENTION_DAYS = 14
NO_TASK = "-"

_NOISY_LOGGERS = ("googleapiclient.discovery_cache", "apscheduler.executors.default", "urllib3")


def _error_fields(exc: SyncError) -> dict[str, Any]:
    fields: dict[str, Any] = {"resource_kind": exc.resource_kind, "resource_id": exc.resource_id}
    if isinstance(exc, PartialCycleError):
        fields["failed_units"] = [f"{unit.resource_kind}:{unit.resource_id}" for unit in exc.failures]
    return fields


class SyncJsonFormatter(logging.Formatter):
    """One JSON object per line; sync errors contribute their resource kind and id."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "task": getattr(record, "task", NO_TASK),
            "event": getattr(record, "event", record.funcName),
            "environment": getattr(record, "environment", "unknown"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            exc = record.exc_info[1]
            if isinstance(exc, SyncError):
                payload.update(_error_fields(exc))
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TaskContextFilter(logging.Filter):
    """Fills in ``environment``, ``task`` and ``event`` so both handlers can rely on them."""

    def __init__(self, environment: str) -> None:
        super().__init__()
        self._environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.environment = self._environment
        if not getattr(record, "task", None):
            record.task = NO_TASK
        if not getattr(record, "event", None):
            record.event = record.funcName
        return True


def configure_logging(config: AppConfig) -> None:
    """Replace the root handlers; verbose mode or a development environment logs DEBUG."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if config.verbose or config.environment == "development" else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    context = TaskContextFilter(config.environment)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
    console.addFilter(context)
    root.addHandler(console)

    daily = TimedRotatingFileHandler(
        filename=str(config.log_path),
        when="midnight",
        backupCount=LOG_RETENTION_DAYS,
        utc=True,
        encoding="utf-8",
    )
    daily.setFormatter(SyncJsonFormatter())
    daily.addFilter(context)
    root.addHandler(daily)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
