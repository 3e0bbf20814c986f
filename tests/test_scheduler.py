"""
Tests for the dispatch trigger.
"""
import socket
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from notification_relay.network import NetworkMonitor
from notification_relay.queue.models import QueueStatus
from notification_relay.scheduler import RETRY_BASE_SECONDS, RETRY_MIN_SECONDS, ExistingPolicy, Scheduler
from notification_relay.webhook_client import WebhookClient
from notification_relay.worker import CycleResult, DispatchWorker


@pytest.fixture
def job():
    return MagicMock(return_value=CycleResult.DONE)


def due_in(scheduler, key):
    return scheduler._jobs[key].due - time.monotonic()


class TestScheduling:
    """Keyed coalescing."""

    def test_keep_coalesces(self, job):
        scheduler = Scheduler(job)

        assert scheduler.schedule_once("sync") is True
        assert scheduler.schedule_once("sync") is False

        assert scheduler.pending_keys() == ["sync"]
        assert scheduler.run_pending() == 1
        job.assert_called_once()

    def test_replace_swaps_the_waiting_job(self, job):
        scheduler = Scheduler(job)
        scheduler.schedule_once("sync", delay=60)

        assert scheduler.schedule_once("sync", policy=ExistingPolicy.REPLACE) is True

        assert scheduler.run_pending() == 1

    def test_future_job_not_run(self, job):
        scheduler = Scheduler(job)
        scheduler.schedule_once("later", delay=60)

        assert scheduler.run_pending() == 0
        job.assert_not_called()

    def test_cancel(self, job):
        scheduler = Scheduler(job)
        scheduler.schedule_once("sync", delay=60)

        assert scheduler.cancel("sync") is True
        assert scheduler.cancel("sync") is False
        assert scheduler.pending_keys() == []

    def test_periodic_interval_must_be_positive(self, job):
        with pytest.raises(ValueError):
            Scheduler(job).schedule_periodic(0, "periodic")

    def test_periodic_job_stays_scheduled(self, job):
        scheduler = Scheduler(job)
        scheduler.schedule_periodic(900, "periodic")
        scheduler._jobs["periodic"].due = time.monotonic() - 1

        assert scheduler.run_pending() == 1

        assert scheduler.pending_keys() == ["periodic"]
        assert due_in(scheduler, "periodic") > 800


class TestResults:
    """Requeue on retry, offline and failure."""

    def test_done_is_not_requeued(self, job):
        scheduler = Scheduler(job)
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        assert scheduler.pending_keys() == []

    def test_retry_requeues_with_growing_delay(self, job):
        job.return_value = CycleResult.RETRY
        scheduler = Scheduler(job)
        scheduler.schedule_once("sync")

        scheduler.run_pending()
        assert scheduler._jobs["sync"].retries == 1
        assert RETRY_BASE_SECONDS - 1 < due_in(scheduler, "sync") <= RETRY_BASE_SECONDS

        scheduler._jobs["sync"].due = time.monotonic() - 1
        scheduler.run_pending()
        assert scheduler._jobs["sync"].retries == 2
        assert due_in(scheduler, "sync") > RETRY_BASE_SECONDS * 2 - 1

    def test_retry_on_periodic_waits_for_interval(self, job):
        job.return_value = CycleResult.RETRY
        scheduler = Scheduler(job)
        scheduler.schedule_periodic(900, "periodic")
        scheduler._jobs["periodic"].due = time.monotonic() - 1

        scheduler.run_pending()

        assert scheduler._jobs["periodic"].retries == 0
        assert due_in(scheduler, "periodic") > 800

    def test_fresh_request_during_run_wins_over_retry(self):
        scheduler = Scheduler(None)

        def run():
            scheduler.schedule_once("sync")
            return CycleResult.RETRY

        scheduler.job = run
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        assert scheduler._jobs["sync"].retries == 0
        assert due_in(scheduler, "sync") <= 0

    def test_job_exception_is_logged_not_raised(self, job):
        job.side_effect = RuntimeError("boom")
        scheduler = Scheduler(job)
        scheduler.schedule_once("sync")

        assert scheduler.run_pending() == 1
        assert scheduler.pending_keys() == []

    def test_offline_one_shot_waits_for_network(self, job):
        scheduler = Scheduler(job, network_check=lambda: False, offline_retry_seconds=30)
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        job.assert_not_called()
        assert scheduler.pending_keys() == ["sync"]
        assert 29 < due_in(scheduler, "sync") <= 30

    def test_offline_periodic_skips_run(self, job):
        scheduler = Scheduler(job, network_check=lambda: False)
        scheduler.schedule_periodic(900, "periodic")
        scheduler._jobs["periodic"].due = time.monotonic() - 1

        scheduler.run_pending()

        job.assert_not_called()
        assert due_in(scheduler, "periodic") > 800

    def test_failing_network_check_counts_as_offline(self, job):
        check = MagicMock(side_effect=OSError("no route"))
        scheduler = Scheduler(job, network_check=check, offline_retry_seconds=30)
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        job.assert_not_called()

    def test_online_runs(self, job):
        scheduler = Scheduler(job, network_check=lambda: True)
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        job.assert_called_once()


class TestThread:
    """Background loop."""

    def test_start_runs_immediate_job_and_stops(self):
        ran = threading.Event()
        scheduler = Scheduler(lambda: ran.set())
        scheduler.start()
        try:
            scheduler.schedule_once("sync")
            assert ran.wait(timeout=5)
        finally:
            scheduler.stop()

        assert not scheduler.thread.is_alive()

    def test_start_twice_is_harmless(self, job):
        scheduler = Scheduler(job)
        scheduler.start()
        first = scheduler.thread
        try:
            scheduler.start()
            assert scheduler.thread is first
        finally:
            scheduler.stop()

    def test_runs_never_overlap(self):
        active = []
        overlap = []
        lock = threading.Lock()
        calls = threading.Semaphore(0)

        def slow():
            with lock:
                active.append(1)
                if len(active) > 1:
                    overlap.append(True)
            time.sleep(0.05)
            with lock:
                active.pop()
            calls.release()
            return CycleResult.DONE

        scheduler = Scheduler(slow)
        scheduler.start()
        try:
            scheduler.schedule_once("a")
            other = threading.Thread(target=lambda: (scheduler.schedule_once("b"), scheduler.run_pending()))
            other.start()
            other.join(timeout=5)
            assert calls.acquire(timeout=5)
            assert calls.acquire(timeout=5)
        finally:
            scheduler.stop()

        assert overlap == []


class TestRetryDelay:
    """Requeue timing after a RETRY result."""

    def test_retry_waits_until_next_item_is_due(self, job):
        job.return_value = CycleResult.RETRY
        scheduler = Scheduler(job, retry_delay=lambda: 60.0)
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        assert 59 < due_in(scheduler, "sync") <= 60
        assert scheduler._jobs["sync"].retries == 1

    def test_overdue_item_reruns_after_minimum_delay(self, job):
        job.return_value = CycleResult.RETRY
        scheduler = Scheduler(job, retry_delay=lambda: 0.0)
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        assert 0 < due_in(scheduler, "sync") <= RETRY_MIN_SECONDS

    def test_missing_hint_falls_back_to_exponential(self, job):
        job.return_value = CycleResult.RETRY
        scheduler = Scheduler(job, retry_delay=lambda: None)
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        assert RETRY_BASE_SECONDS - 1 < due_in(scheduler, "sync") <= RETRY_BASE_SECONDS

    def test_failing_hint_falls_back_to_exponential(self, job):
        job.return_value = CycleResult.RETRY
        scheduler = Scheduler(job, retry_delay=MagicMock(side_effect=RuntimeError("db gone")))
        scheduler.schedule_once("sync")

        scheduler.run_pending()

        assert RETRY_BASE_SECONDS - 1 < due_in(scheduler, "sync") <= RETRY_BASE_SECONDS


class TestStop:
    def test_stop_reports_thread_still_running(self):
        release = threading.Event()
        entered = threading.Event()

        def blocking():
            entered.set()
            release.wait(timeout=5)

        scheduler = Scheduler(blocking)
        scheduler.start()
        scheduler.schedule_once("sync")
        assert entered.wait(timeout=5)
        try:
            assert scheduler.stop(timeout=0.05) is False
        finally:
            release.set()
            scheduler.thread.join(timeout=5)

    def test_stop_when_idle(self, job):
        scheduler = Scheduler(job)
        scheduler.start()

        assert scheduler.stop() is True


class TestUnreachableEndpoint:
    """A refused webhook is a delivery failure, not an offline device."""

    def test_refused_endpoint_exhausts_retries(self, store, config_store, write_config, device, make_item):
        with socket.socket() as sock:
            sock.bind(("127.0.0.1", 0))
            closed_port = sock.getsockname()[1]
        write_config(webhook_url=f"http://127.0.0.1:{closed_port}/hook", max_retry=3)
        item_id = store.insert(make_item())

        real_session = requests.Session()
        real_session.trust_env = False
        session = MagicMock(wraps=real_session)
        worker = DispatchWorker(store, config_store, client=WebhookClient(session=session, timeout=(2, 2)), device=device)
        scheduler = Scheduler(
            worker.run_cycle,
            network_check=NetworkMonitor(probe_host=""),
            retry_delay=worker.seconds_until_next_due,
        )

        with patch("notification_relay.network._has_route", return_value=True):
            for _ in range(5):
                scheduler.schedule_once("sync", policy=ExistingPolicy.REPLACE)
                scheduler.run_pending()
                with store.db.cursor() as cur:
                    cur.execute("UPDATE notification_queue SET next_retry_at = 0 WHERE status = 'PENDING'")

        stored = store.get(item_id)
        assert session.post.call_count == 3
        assert stored.status == QueueStatus.FAILED
        assert stored.attempt_count == 3
        assert stored.last_error
