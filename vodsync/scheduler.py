"""Supervised task scheduling with backoff, observability and persistence hooks."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import STATE_RUNNING, STATE_STOPPED
from apscheduler.triggers.date import DateTrigger
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_never, stop_when_event_set, wait_exponential

from .db import DatabaseManager
from .models import CycleReport
from .utils.healthcheck import ping

logger = logging.getLogger(__name__)


class SyncTask(Protocol):
    name: str

    @property
    def interval_seconds(self) -> float: ...

    @property
    def healthcheck_url(self) -> str | None: ...

    def run_cycle(self) -> CycleReport: ...


@dataclass(frozen=True, slots=True)
class SchedulerSnapshot:
    """Snapshot of job registrations and high-level runtime state."""

    total_jobs: int
    running: bool
    next_runs: dict[str, str | None]


class TaskSupervisor:
    """Retry one task's cycle until it succeeds.

    The first attempt runs immediately; consecutive failures wait 1, 2, 4, ...
    units capped at ``max_units``. Every call to :meth:`run_cycle` starts a
    fresh retry sequence, so a success resets the next failure's delay.
    """

    def __init__(
        self,
        name: str,
        cycle: Callable[[], CycleReport],
        *,
        unit_seconds: float = 1.0,
        max_units: int = 32,
        sleep: Callable[[float], object] | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.name = name
        self.cycle = cycle
        self.unit_seconds = unit_seconds
        self.max_units = max_units
        self.stop_event = stop_event
        if sleep is None:
            sleep = stop_event.wait if stop_event is not None else _blocking_sleep
        self._retrying = Retrying(
            retry=retry_if_exception_type(Exception),
            wait=wait_exponential(multiplier=unit_seconds, exp_base=2, max=unit_seconds * max_units),
            stop=stop_when_event_set(stop_event) if stop_event is not None else stop_never,
            sleep=sleep,
            before_sleep=self._log_failure,
            reraise=True,
        )

    def _log_failure(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.error(
            "[%s] Got an error, will restart the loop in %.1f seconds: %s",
            self.name,
            delay,
            exc,
        )

    def run_cycle(self) -> CycleReport:
        return self._retrying(self.cycle)


def _blocking_sleep(seconds: float) -> None:
    threading.Event().wait(seconds)


class SchedulerManager:
    """Wrap APScheduler so each supervised task re-arms itself after a successful cycle."""

    def __init__(
        self,
        db: DatabaseManager,
        *,
        backoff_unit_seconds: float = 1.0,
        backoff_max_units: int = 32,
    ) -> None:
        self.db = db
        self.backoff_unit_seconds = backoff_unit_seconds
        self.backoff_max_units = backoff_max_units
        self._stop_event = threading.Event()
        self.scheduler = BackgroundScheduler(
            timezone=timezone.utc,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": None,
            },
        )

    def start(self) -> None:
        self._stop_event.clear()
        self.scheduler.start()
        logger.info("Scheduler started with %d jobs", len(self.scheduler.get_jobs()))
        self.publish_health()

    def shutdown(self) -> None:
        self._stop_event.set()
        if self.scheduler.state == STATE_STOPPED:
            return
        self.scheduler.shutdown(wait=True)
        logger.info("Scheduler shutdown complete.")
        self.publish_health()

    def run_attempt(self, task: SyncTask) -> CycleReport:
        """Run one cycle of ``task`` and persist its outcome; failures are re-raised."""
        job_id = task.name
        start_time = datetime.now(timezone.utc)
        try:
            logger.debug("Running job %s", job_id)
            report = task.run_cycle()
        except Exception as exc:
            duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
            logger.warning("Job %s failed: %s", job_id, exc, extra={"task": job_id, "event": "job.failed"})
            self.db.record_job_run(
                job_id=job_id,
                status="failure",
                started_at=start_time,
                duration_ms=duration_ms,
                error=str(exc),
            )
            self.db.record_health(component=f"job:{job_id}", status="fail", detail=str(exc))
            raise

        duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        logger.info(
            "Job %s completed in %.2fms: %s",
            job_id,
            duration_ms,
            report.as_dict(),
            extra={"task": job_id, "event": "job.completed"},
        )
        self.db.record_job_run(
            job_id=job_id,
            status="success",
            started_at=start_time,
            duration_ms=duration_ms,
        )
        self.db.record_health(
            component=f"job:{job_id}",
            status="pass",
            detail=json.dumps(report.as_dict(), separators=(",", ":")),
        )
        if task.healthcheck_url:
            ping(task.healthcheck_url)
        return report

    def supervise(self, task: SyncTask) -> TaskSupervisor:
        return TaskSupervisor(
            task.name,
            lambda: self.run_attempt(task),
            unit_seconds=self.backoff_unit_seconds,
            max_units=self.backoff_max_units,
            stop_event=self._stop_event,
        )

    def add_supervised_task(self, task: SyncTask) -> None:
        """Register ``task`` to run now and again ``interval`` after every successful cycle."""
        supervisor = self.supervise(task)
        job_id = task.name

        def supervised_job() -> None:
            try:
                supervisor.run_cycle()
            except Exception:
                if not self._stop_event.is_set():
                    raise
                logger.info("Job %s interrupted by shutdown", job_id)
                return
            if self._stop_event.is_set():
                return
            next_run = datetime.now(timezone.utc) + timedelta(seconds=task.interval_seconds)
            logger.info("[%s] Sleeping for %.f minutes...", job_id, task.interval_seconds / 60)
            self.scheduler.add_job(
                supervised_job,
                DateTrigger(run_date=next_run),
                id=job_id,
                replace_existing=True,
            )

        self.scheduler.add_job(
            supervised_job,
            DateTrigger(run_date=datetime.now(timezone.utc)),
            id=job_id,
            replace_existing=True,
        )
        logger.info("Registered supervised job %s every %.0fs", job_id, task.interval_seconds)

    def snapshot(self) -> SchedulerSnapshot:
        """Return a snapshot of scheduler state for external health checks."""
        jobs = self.scheduler.get_jobs()
        next_runs: dict[str, str | None] = {}
        for job in jobs:
            # pending jobs only get a next run time once the scheduler starts
            next_run = getattr(job, "next_run_time", None)
            next_runs[job.id] = next_run.isoformat() if next_run else None
        running = self.scheduler.state == STATE_RUNNING
        return SchedulerSnapshot(total_jobs=len(jobs), running=running, next_runs=next_runs)

    def publish_health(self) -> None:
        """Persist scheduler health into the database for dashboards."""
        snapshot = self.snapshot()
        status = "pass" if snapshot.running else "fail"
        detail = json.dumps({"next_runs": snapshot.next_runs}) if snapshot.next_runs else None
        self.db.record_health(component="scheduler", status=status, detail=detail)
