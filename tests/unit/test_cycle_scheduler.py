"""
Tests for CycleScheduler: interval alignment, exception isolation, backoff and shutdown.
"""

import datetime
import threading
import time

import pytest
from unittest.mock import Mock

from config.trading_core_config import get_config
from src.trading.execution.cycle_scheduler import CycleScheduler, seconds_until_next_run


class TestSecondsUntilNextRun:
    """Test suite for interval alignment."""

    def test_hourly_alignment(self):
        now = datetime.datetime(2024, 1, 1, 10, 15, 0)

        assert seconds_until_next_run(now, 3600) == 2700

    def test_on_boundary_is_zero(self):
        now = datetime.datetime(2024, 1, 1, 11, 0, 0)

        assert seconds_until_next_run(now, 3600) == 0

    def test_sub_hour_interval(self):
        now = datetime.datetime(2024, 1, 1, 10, 7, 30)

        assert seconds_until_next_run(now, 300) == 150


class TestCycleScheduler:
    """Test suite for CycleScheduler."""

    def test_from_config(self):
        scheduler = CycleScheduler.from_config(get_config('testnet'))

        assert scheduler.max_errors == 10
        assert scheduler.backoff_seconds(1) == 60

    def test_backoff_is_linear_and_capped(self):
        scheduler = CycleScheduler(error_backoff_base=60, max_backoff=300)

        assert scheduler.backoff_seconds(1) == 60
        assert scheduler.backoff_seconds(3) == 180
        assert scheduler.backoff_seconds(9) == 300

    def test_add_job_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            CycleScheduler().add_job("cycle", Mock(), 0)

    def test_start_without_jobs_raises(self):
        with pytest.raises(RuntimeError):
            CycleScheduler().start()

    def test_run_job_once_isolates_exceptions(self):
        """A failing callback is counted, not raised."""
        scheduler = CycleScheduler()
        job = scheduler.add_job("cycle", Mock(side_effect=RuntimeError("boom")), 60)

        assert scheduler.run_job_once(job) is False
        assert scheduler.run_job_once(job) is False
        assert job.errors == 2
        assert job.runs == 0

    def test_success_resets_error_count(self):
        callback = Mock(side_effect=[RuntimeError("boom"), None])
        scheduler = CycleScheduler()
        job = scheduler.add_job("cycle", callback, 60)

        scheduler.run_job_once(job)
        assert scheduler.run_job_once(job) is True

        assert job.errors == 0
        assert job.runs == 1

    def test_jobs_run_repeatedly_until_stopped(self):
        """Each job runs on its own thread at its interval."""
        reached = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            if len(calls) >= 3:
                reached.set()

        scheduler = CycleScheduler()
        scheduler.add_job("cycle", callback, 0.01)

        assert scheduler.start() is True
        assert scheduler.start() is False
        assert reached.wait(5)
        scheduler.stop()

        assert scheduler.stop_event.is_set()
        assert scheduler.is_running() is False
        assert len(calls) >= 3

    def test_failing_job_does_not_stop_other_jobs(self):
        reached = threading.Event()
        scheduler = CycleScheduler(error_backoff_base=0.01, max_backoff=0.01)
        scheduler.add_job("broken", Mock(side_effect=RuntimeError("boom")), 0.01)
        scheduler.add_job("healthy", reached.set, 0.01)

        scheduler.start()
        assert reached.wait(5)
        scheduler.stop()

    def test_job_runs_never_overlap(self):
        """Jobs on different threads take turns; no two callbacks run at once."""
        active = []
        overlaps = []
        counts = {'cycle': 0, 'monitor': 0}
        done = threading.Event()

        def make_job(name):
            def job():
                active.append(name)
                if len(active) > 1:
                    overlaps.append(list(active))
                time.sleep(0.005)
                active.remove(name)
                counts[name] += 1
                if min(counts.values()) >= 3:
                    done.set()
            return job

        scheduler = CycleScheduler()
        scheduler.add_job("cycle", make_job('cycle'), 0.001)
        scheduler.add_job("monitor", make_job('monitor'), 0.001)

        scheduler.start()
        assert done.wait(5)
        scheduler.stop()

        assert overlaps == []

    def test_error_budget_stops_the_job(self):
        """The loop exits after max_errors consecutive failures."""
        callback = Mock(side_effect=RuntimeError("boom"))
        scheduler = CycleScheduler(max_errors=3, error_backoff_base=0, max_backoff=0)
        job = scheduler.add_job("cycle", callback, 0.01)

        scheduler.start()
        job.thread.join(timeout=5)

        assert not job.thread.is_alive()
        assert job.errors == 3
        assert callback.call_count == 3
        scheduler.stop()

    def test_stop_sets_shared_cancel_event(self):
        stop_event = threading.Event()
        scheduler = CycleScheduler(stop_event=stop_event)
        scheduler.add_job("cycle", Mock(), 3600)

        scheduler.start()
        scheduler.stop()

        assert stop_event.is_set()
        assert scheduler.wait(0) is True
