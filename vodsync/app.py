"""Top-level application controller for vodsync."""

from __future__ import annotations

import json
import logging
import signal
import threading
from contextlib import contextmanager
from types import FrameType
from typing import Any, Callable, Iterator, Optional, Sequence

from .config import AppConfig, ConfigError, load_config
from .db import DatabaseManager
from .integrations.drive import DriveClient
from .integrations.google_api import GoogleServices
from .integrations.scraper import LivePageScraper
from .integrations.sheets import SheetsClient
from .integrations.youtube import YouTubeClient
from .logging_utils import configure_logging
from .scheduler import SchedulerManager, SyncTask
from .services.manifest_sync import ManifestSyncTask
from .services.youtube_sync import YouTubeSyncTask

logger = logging.getLogger(__name__)


def _log_event(level: int, event: str, **fields: Any) -> None:
    """Emit structured log events with consistent metadata."""
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, separators=(",", ":")))


def build_tasks(config: AppConfig, db: DatabaseManager, only: Optional[str] = None) -> list[SyncTask]:
    """Construct the enabled synchronisation tasks from configuration."""
    google = GoogleServices(config)
    tasks: list[SyncTask] = []
    if config.manifest_configured and only in (None, "manifest"):
        tasks.append(
            ManifestSyncTask(
                config.manifest_settings(),
                db,
                DriveClient(google.service("drive", "v3")),
                SheetsClient(google.service("sheets", "v4")),
            )
        )
    elif only == "manifest":
        raise ConfigError("Manifest sync requested but LWOD_FOLDER is not configured")
    if config.youtube_configured and only in (None, "youtube"):
        tasks.append(
            YouTubeSyncTask(
                config.youtube_settings(),
                db,
                YouTubeClient(google.service("youtube", "v3")),
                LivePageScraper(),
            )
        )
    elif only == "youtube":
        raise ConfigError("YouTube sync requested but YT_CHANNEL/YT_PLAYLIST are not configured")
    if not tasks:
        raise ConfigError("Nothing to synchronise; configure LWOD_FOLDER and/or YT_CHANNEL and YT_PLAYLIST")
    return tasks


@contextmanager
def _stop_on_signals(stop: Callable[[], None]) -> Iterator[None]:
    """Route SIGTERM/SIGINT to ``stop`` for the duration of the block, main thread only."""
    if threading.current_thread() is not threading.main_thread():
        _log_event(logging.WARNING, "vodsync.signal_handlers_skipped", reason="not_main_thread")
        yield
        return

    def handle(signum: int, frame: FrameType | None) -> None:
        _log_event(logging.WARNING, "vodsync.signal_received", signal=signal.Signals(signum).name)
        stop()

    previous = {signum: signal.signal(signum, handle) for signum in (signal.SIGTERM, signal.SIGINT)}
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


class VodSync:
    """Runs the manifest and YouTube tasks once, or keeps them supervised until stopped."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        tasks: Optional[Sequence[SyncTask]] = None,
        only: Optional[str] = None,
    ) -> None:
        self.config = config or load_config()
        configure_logging(self.config)
        self.db = DatabaseManager(self.config.database_path)
        self.tasks = list(tasks) if tasks is not None else build_tasks(self.config, self.db, only)
        self.scheduler = SchedulerManager(
            self.db,
            backoff_unit_seconds=self.config.backoff_unit_seconds,
            backoff_max_units=self.config.backoff_max_units,
        )
        self._stopping = threading.Event()
        _log_event(
            logging.INFO,
            "vodsync.initialized",
            environment=self.config.environment,
            tasks=self.task_names,
            continuous=self.config.continuous,
        )

    @property
    def task_names(self) -> list[str]:
        return [task.name for task in self.tasks]

    def run_once(self) -> bool:
        """Run each task's cycle a single time without the scheduler; return overall success."""
        ok = True
        try:
            for task in self.tasks:
                try:
                    report = self.scheduler.run_attempt(task)
                except Exception as exc:
                    ok = False
                    _log_event(logging.ERROR, "vodsync.cycle_failed", task=task.name, error=str(exc))
                else:
                    _log_event(logging.INFO, "vodsync.cycle_completed", **report.as_dict())
        finally:
            self.db.close()
        return ok

    def run_forever(self) -> None:
        """Supervise every task on the scheduler until :meth:`stop` or a termination signal."""
        for task in self.tasks:
            self.scheduler.add_supervised_task(task)
        try:
            with _stop_on_signals(self.stop):
                self.scheduler.start()
                self.db.record_health(component="vodsync", status="pass", detail=",".join(self.task_names))
                _log_event(logging.INFO, "vodsync.supervising", tasks=self.task_names)
                self._stopping.wait()
        except Exception as exc:
            _log_event(logging.CRITICAL, "vodsync.supervision_failed", error=str(exc))
            self.db.record_health(component="vodsync", status="fail", detail=str(exc))
            raise
        finally:
            self.close()

    def stop(self) -> None:
        """Ask :meth:`run_forever` to return; in-flight cycles stop at their next backoff wait."""
        if self._stopping.is_set():
            return
        _log_event(logging.WARNING, "vodsync.stop_requested", tasks=self.task_names)
        self._stopping.set()

    def close(self) -> None:
        self.scheduler.shutdown()
        self.db.record_health(component="vodsync", status="warn", detail="stopped")
        self.db.close()
        _log_event(logging.INFO, "vodsync.closed")

    def health_snapshot(self) -> dict[str, Any]:
        """Return current health metadata for dashboards/CLI calls."""
        snapshot = self.scheduler.snapshot()
        return {
            "environment": self.config.environment,
            "tasks": self.task_names,
            "scheduler": {
                "total_jobs": snapshot.total_jobs,
                "running": snapshot.running,
                "next_runs": snapshot.next_runs,
            },
        }
