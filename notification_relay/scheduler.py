"""Periodic and one-shot triggers for the dispatch cycle."""
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from notification_relay import settings
from notification_relay.logging_conf import logger
from notification_relay.worker import CycleResult

RETRY_BASE_SECONDS = 30
RETRY_MAX_SECONDS = 5 * 60 * 60
RETRY_MIN_SECONDS = 1


class ExistingPolicy(str, Enum):
    """What to do when a job with the same key is already scheduled."""

    KEEP = "keep"
    REPLACE = "replace"


@dataclass
class _Job:
    key: str
    due: float
    interval: Optional[float] = None
    retries: int = 0

    @property
    def periodic(self) -> bool:
        return self.interval is not None


class Scheduler:
    """
    Runs the dispatch job from a single background thread.

    Jobs are keyed: scheduling a key that is already waiting is coalesced
    according to the policy instead of stacking a duplicate. Only one run
    is ever in flight, and no run starts while the network check fails.
    """

    def __init__(
        self,
        job: Callable[[], Optional[CycleResult]],
        network_check: Optional[Callable[[], bool]] = None,
        offline_retry_seconds: Optional[float] = None,
        retry_delay: Optional[Callable[[], Optional[float]]] = None,
    ):
        self.job = job
        self.network_check = network_check
        self.retry_delay = retry_delay
        if offline_retry_seconds is None:
            offline_retry_seconds = settings.OFFLINE_RETRY_SECONDS
        self.offline_retry_seconds = offline_retry_seconds

        self._jobs: Dict[str, _Job] = {}
        self._cond = threading.Condition()
        self._run_lock = threading.Lock()
        self.running = False
        self.thread = None

    def start(self):
        """Start the scheduler in a background thread."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        self.thread = threading.Thread(target=self._run, name="dispatch-scheduler", daemon=True)
        self.thread.start()
        logger.info("Scheduler started")

    def stop(self, timeout: float = 30) -> bool:
        """Stop the scheduler, letting an in-flight run finish.

        Returns False if the thread was still running when the timeout expired.
        """
        if not self.running:
            return True

        with self._cond:
            self.running = False
            self._cond.notify_all()
        if self.thread:
            self.thread.join(timeout=timeout)
            if self.thread.is_alive():
                logger.warning(f"Scheduler thread still running after {timeout}s")
                return False
        logger.info("Scheduler stopped")
        return True

    def schedule_periodic(self, interval: float, key: str, policy: ExistingPolicy = ExistingPolicy.KEEP) -> bool:
        """Run the job every `interval` seconds. Returns False if an existing job was kept."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        job = _Job(key=key, due=time.monotonic() + interval, interval=interval)
        return self._add(job, policy)

    def schedule_once(
        self,
        key: str,
        policy: ExistingPolicy = ExistingPolicy.KEEP,
        delay: float = 0,
    ) -> bool:
        """Run the job once as soon as possible. Returns False if a waiting run was kept."""
        return self._add(_Job(key=key, due=time.monotonic() + delay), policy)

    def pending_keys(self) -> List[str]:
        with self._cond:
            return sorted(self._jobs)

    def cancel(self, key: str) -> bool:
        with self._cond:
            return self._jobs.pop(key, None) is not None

    def run_pending(self) -> int:
        """Run every job that is due now on the calling thread. Returns the count taken."""
        with self._cond:
            now = time.monotonic()
            due_jobs = sorted((j for j in self._jobs.values() if j.due <= now), key=lambda j: j.due)
            keys = [j.key for j in due_jobs]

        taken = 0
        for key in keys:
            with self._cond:
                job = self._take_due(now, key)
            if job is None:
                continue
            taken += 1
            self._execute(job)
        return taken

    def _add(self, job: _Job, policy: ExistingPolicy) -> bool:
        with self._cond:
            existing = self._jobs.get(job.key)
            if existing is not None and policy == ExistingPolicy.KEEP:
                logger.debug(f"Job {job.key} already scheduled; keeping existing")
                return False
            self._jobs[job.key] = job
            self._cond.notify_all()
        logger.debug(f"Scheduled job {job.key}")
        return True

    def _take_due(self, now: Optional[float] = None, key: Optional[str] = None) -> Optional[_Job]:
        """Pop the earliest due job, or `key` if due. Caller holds the condition."""
        if now is None:
            now = time.monotonic()
        due = [j for j in self._jobs.values() if j.due <= now and (key is None or j.key == key)]
        if not due:
            return None
        job = min(due, key=lambda j: j.due)
        if job.periodic:
            job.due = time.monotonic() + job.interval
            return replace(job)
        del self._jobs[job.key]
        return job

    def _wait_timeout(self) -> Optional[float]:
        if not self._jobs:
            return None
        return max(0.0, min(j.due for j in self._jobs.values()) - time.monotonic())

    def _requeue(self, job: _Job, delay: float, retries: int):
        with self._cond:
            # A fresh request that arrived during the run wins
            if job.key in self._jobs:
                return
            self._jobs[job.key] = replace(job, due=time.monotonic() + delay, retries=retries)
            self._cond.notify_all()

    def _execute(self, job: _Job):
        with self._run_lock:
            if self.network_check is not None and not self._network_ok():
                if job.periodic:
                    logger.info(f"Network unavailable; skipping {job.key} until next interval")
                else:
                    logger.info(f"Network unavailable; {job.key} re-checks in {self.offline_retry_seconds}s")
                    self._requeue(job, self.offline_retry_seconds, job.retries)
                return

            try:
                result = self.job()
            except Exception as e:
                logger.error(f"Dispatch job {job.key} failed: {e}", exc_info=True)
                return

        if job.periodic:
            return
        if result == CycleResult.RETRY:
            delay = self._next_retry_delay(job)
            logger.info(f"Dispatch asked for retry; {job.key} runs again in {delay}s")
            self._requeue(job, delay, job.retries + 1)

    def _next_retry_delay(self, job: _Job) -> float:
        """When the earliest waiting item is due, else exponential from RETRY_BASE_SECONDS."""
        hint = None
        if self.retry_delay is not None:
            try:
                hint = self.retry_delay()
            except Exception as e:
                logger.warning(f"Retry delay lookup failed: {e}")
        if hint is not None:
            return min(max(hint, RETRY_MIN_SECONDS), RETRY_MAX_SECONDS)
        return min(RETRY_BASE_SECONDS * (2 ** job.retries), RETRY_MAX_SECONDS)

    def _network_ok(self) -> bool:
        try:
            return bool(self.network_check())
        except Exception as e:
            logger.warning(f"Network check failed: {e}")
            return False

    def _run(self):
        """Main scheduler loop."""
        logger.info("Scheduler thread started")

        while True:
            with self._cond:
                job = None
                while self.running:
                    job = self._take_due()
                    if job is not None:
                        break
                    self._cond.wait(timeout=self._wait_timeout())
                if not self.running:
                    break
            self._execute(job)

        logger.info("Scheduler thread stopped")
