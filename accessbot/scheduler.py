"""Daily fixed-time scheduling for the lifecycle sweeps."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from threading import Event, Lock, Thread
from typing import Callable, Dict, List, Mapping, Optional

from .app.errors import UnknownJobError
from .app.lifecycle.results import JobSummary
from .app.timeutils import Clock, current_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledJob:
    """A sweep fired once per local day at ``at``."""

    name: str
    at: time
    run: Callable[[], JobSummary]


def _empty_metrics() -> Dict[str, object]:
    return {
        "runs": 0,
        "candidates": 0,
        "delivered": 0,
        "failures": 0,
        "last_run_at": None,
        "last_success_at": None,
        "last_error": None,
        "last_summary": None,
    }


def _seconds_until(hour: int, minute: int, tz: tzinfo, now: datetime) -> float:
    """Seconds from ``now`` to the next ``hour:minute`` on the local wall clock."""

    local_now = now.astimezone(tz)
    target = datetime.combine(local_now.date(), time(hour, minute), tzinfo=tz)
    if target <= local_now:
        target = datetime.combine(local_now.date() + timedelta(days=1), time(hour, minute), tzinfo=tz)
    return max((target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds(), 0.0)


class _JobWorker(Thread):
    def __init__(self, scheduler: "DailyJobScheduler", job: ScheduledJob):
        super().__init__(daemon=True, name=f"accessbot-{job.name}")
        self.job = job
        self._scheduler = scheduler
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        while not self._stop_event.is_set():
            delay = self._scheduler.seconds_until_next(self.job)
            if self._stop_event.wait(delay):
                return
            try:
                self._scheduler.run_job(self.job.name)
            except Exception:
                # Errors are recorded inside run_job; keep the schedule alive.
                pass
            # Leave the trigger minute before recomputing the next occurrence.
            if self._stop_event.wait(1.0):
                return


class DailyJobScheduler:
    """Runs each registered job once a day at its local trigger time.

    Each job has its own worker thread; runs of the same job never overlap and
    a failing run is logged and recorded without stopping later triggers.
    """

    def __init__(
        self,
        jobs: Mapping[str, ScheduledJob],
        *,
        tz: tzinfo,
        clock: Optional[Clock] = None,
    ) -> None:
        self._jobs: Dict[str, ScheduledJob] = dict(jobs)
        self._tz = tz
        self._clock = clock
        self._scheduler_lock = Lock()
        self._metrics_lock = Lock()
        self._run_locks: Dict[str, Lock] = {name: Lock() for name in self._jobs}
        self._workers: Dict[str, _JobWorker] = {}
        self._metrics: Dict[str, Dict[str, object]] = {name: _empty_metrics() for name in self._jobs}

    @property
    def job_names(self) -> List[str]:
        return list(self._jobs)

    def seconds_until_next(self, job: ScheduledJob) -> float:
        return _seconds_until(job.at.hour, job.at.minute, self._tz, current_time(self._clock))

    def _record_run_start(self, name: str, started_at: datetime) -> None:
        with self._metrics_lock:
            self._metrics[name]["last_run_at"] = started_at

    def _record_run_success(self, name: str, completed_at: datetime, summary: JobSummary) -> None:
        with self._metrics_lock:
            metrics = self._metrics[name]
            metrics["runs"] = int(metrics.get("runs", 0)) + 1
            metrics["candidates"] = int(metrics.get("candidates", 0)) + summary.candidates
            metrics["delivered"] = int(metrics.get("delivered", 0)) + summary.delivered
            metrics["failures"] = int(metrics.get("failures", 0)) + summary.failures
            metrics["last_success_at"] = completed_at
            metrics["last_error"] = None
            metrics["last_summary"] = summary.as_dict()

    def _record_run_failure(self, name: str, error: Exception) -> None:
        with self._metrics_lock:
            metrics = self._metrics[name]
            metrics["runs"] = int(metrics.get("runs", 0)) + 1
            metrics["failures"] = int(metrics.get("failures", 0)) + 1
            metrics["last_error"] = f"{type(error).__name__}: {error}"

    def run_job(self, name: str) -> JobSummary:
        job = self._jobs.get(name)
        if job is None:
            raise UnknownJobError(name)

        with self._run_locks[name]:
            started_at = current_time(self._clock)
            self._record_run_start(name, started_at)
            logger.info("Running scheduled job", extra={"job": name})
            try:
                summary = job.run()
            except Exception as exc:
                self._record_run_failure(name, exc)
                logger.exception("Scheduled job failed", extra={"job": name})
                raise
            self._record_run_success(name, current_time(self._clock), summary)
            logger.info("Scheduled job completed", extra={"job": name, "summary": summary.as_dict()})
            return summary

    def start(self) -> None:
        with self._scheduler_lock:
            if self._workers:
                return
            for name, job in self._jobs.items():
                self._workers[name] = _JobWorker(self, job)
            for worker in self._workers.values():
                worker.start()
            logger.info(
                "Lifecycle scheduler started",
                extra={
                    "jobs": {
                        name: {"at": job.at.strftime("%H:%M"), "delay_seconds": round(self.seconds_until_next(job), 2)}
                        for name, job in self._jobs.items()
                    }
                },
            )

    def shutdown(self) -> None:
        with self._scheduler_lock:
            workers = list(self._workers.values())
            for worker in workers:
                worker.stop()
            for worker in workers:
                worker.join(timeout=1.0)
            self._workers.clear()
            logger.info("Lifecycle scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def get_metrics(self) -> Dict[str, Dict[str, object]]:
        with self._metrics_lock:
            snapshot: Dict[str, Dict[str, object]] = {}
            for name, value in self._metrics.items():
                snapshot[name] = {
                    **value,
                    "scheduled_at": self._jobs[name].at.strftime("%H:%M"),
                    "last_run_at": value["last_run_at"].isoformat() if value.get("last_run_at") else None,
                    "last_success_at": value["last_success_at"].isoformat() if value.get("last_success_at") else None,
                }
            return snapshot


__all__ = ["DailyJobScheduler", "ScheduledJob"]
