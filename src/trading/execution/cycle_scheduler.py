"""
CycleScheduler - runs registered jobs at fixed intervals on daemon threads.
Each job loop isolates exceptions, backs off after errors and stops once its error budget is spent.
Stopping sets the shared cancellation event so a cycle in flight skips its remaining phases.
Job runs are serialized by one lock, so only one job writes to the order store at a time.
"""

import datetime
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from src.core.context_aware_logger import get_context_logger, TradingEventType

context_logger = get_context_logger()


def seconds_until_next_run(now: datetime.datetime, interval_seconds: int) -> float:
    """Seconds from now to the next multiple of interval_seconds since midnight."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = (now - midnight).total_seconds()
    remainder = elapsed % interval_seconds
    return 0.0 if remainder == 0 else interval_seconds - remainder


@dataclass
class ScheduledJob:
    name: str
    callback: Callable[[], Any]
    interval_seconds: float
    align: bool = False
    runs: int = 0
    errors: int = 0
    thread: Optional[threading.Thread] = None


class CycleScheduler:
    """Interval scheduler for the trading cycle, the order monitor and the audit purge."""

    def __init__(self,
                 max_errors: int = 10,
                 error_backoff_base: float = 60,
                 max_backoff: float = 300,
                 stop_event: Optional[threading.Event] = None,
                 clock: Callable[[], datetime.datetime] = datetime.datetime.now):
        self.max_errors = max_errors
        self.error_backoff_base = error_backoff_base
        self.max_backoff = max_backoff
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self._jobs: List[ScheduledJob] = []
        self._running = False
        self._run_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any], stop_event: Optional[threading.Event] = None) -> 'CycleScheduler':
        scheduling = config['scheduling']
        return cls(
            max_errors=scheduling['max_errors'],
            error_backoff_base=scheduling['error_backoff_base'],
            max_backoff=scheduling['max_backoff'],
            stop_event=stop_event,
        )

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs)

    def add_job(self, name: str, callback: Callable[[], Any], interval_seconds: float,
                align: bool = False) -> ScheduledJob:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive for job {name}")
        job = ScheduledJob(name=name, callback=callback, interval_seconds=interval_seconds, align=align)
        self._jobs.append(job)
        return job

    def start(self) -> bool:
        if self._running:
            return False
        if not self._jobs:
            raise RuntimeError("No jobs registered")

        self.stop_event.clear()
        self._running = True
        for job in self._jobs:
            job.thread = threading.Thread(target=self._job_loop, args=(job,), name=f"job-{job.name}", daemon=True)
            job.thread.start()

        context_logger.log_event(
            TradingEventType.SYSTEM_HEALTH,
            "Scheduler started",
            context_provider={
                'jobs': [job.name for job in self._jobs],
                'intervals': [job.interval_seconds for job in self._jobs],
            },
            decision_reason="SCHEDULER_STARTED"
        )
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self.stop_event.set()
        for job in self._jobs:
            if job.thread and job.thread.is_alive() and job.thread is not threading.current_thread():
                job.thread.join(timeout=timeout)
        self._running = False
        context_logger.log_event(
            TradingEventType.SYSTEM_HEALTH,
            "Scheduler stopped",
            context_provider={'runs': {job.name: job.runs for job in self._jobs}},
            decision_reason="SCHEDULER_STOPPED"
        )

    def is_running(self) -> bool:
        return self._running and any(job.thread and job.thread.is_alive() for job in self._jobs)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop is requested. Returns True once stopped."""
        return self.stop_event.wait(timeout)

    def run_job_once(self, job: ScheduledJob) -> bool:
        """Run one job invocation under the shared run lock, isolating its exceptions. Returns True on success."""
        try:
            with self._run_lock:
                job.callback()
            job.runs += 1
            job.errors = 0
            return True
        except Exception as e:
            job.errors += 1
            context_logger.log_event(
                TradingEventType.SYSTEM_HEALTH,
                f"Scheduled job {job.name} failed",
                context_provider={
                    'job': job.name,
                    'error': str(e),
                    'error_type': type(e).__name__,
                    'consecutive_errors': job.errors,
                },
                decision_reason="SCHEDULED_JOB_ERROR"
            )
            return False

    def backoff_seconds(self, error_count: int) -> float:
        return min(self.error_backoff_base * error_count, self.max_backoff)

    def _job_loop(self, job: ScheduledJob) -> None:
        delay = seconds_until_next_run(self.clock(), job.interval_seconds) if job.align else 0.0

        while not self.stop_event.wait(delay):
            if self.run_job_once(job):
                delay = (seconds_until_next_run(self.clock(), job.interval_seconds) or job.interval_seconds
                         if job.align else job.interval_seconds)
                continue

            if job.errors >= self.max_errors:
                context_logger.log_event(
                    TradingEventType.SYSTEM_HEALTH,
                    f"Scheduled job {job.name} stopped after {job.errors} consecutive errors",
                    context_provider={'job': job.name, 'max_errors': self.max_errors},
                    decision_reason="SCHEDULED_JOB_ERROR_BUDGET_EXHAUSTED"
                )
                return
            delay = self.backoff_seconds(job.errors)
