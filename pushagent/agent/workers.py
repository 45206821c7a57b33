"""
Upload worker pool.

A fixed set of threads takes jobs from the UploadQueue and pushes them through
the CacheClient. Each worker:

1. resolves a fresh bearer token for the job's cache,
2. pushes the path,
3. on a retryable failure waits (exponential backoff with jitter, capped) and
   tries again, up to ``max_attempts``,
4. on success publishes an ``uploaded`` event; on a terminal failure or when
   attempts run out publishes ``failed`` and writes the job to the
   dead-letter log.

The job keeps its in-flight slot during backoff, so the same path cannot be
queued again while it is waiting to be retried.

A missing token is not retried: it almost always means the cache is
misconfigured, not that something transient went wrong.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from pushagent.caching.client import CacheClient
from pushagent.caching.credentials import CredentialProvider
from pushagent.config.parser import RetryConfig
from pushagent.core.exceptions import (
    CacheClientError,
    CacheClientRequestError,
    CacheServerError,
    DeadLetterError,
    UnauthorizedError,
    UnreachableError,
)

from .deadletter import DeadLetterLog
from .jobs import UploadJob
from .observability import AgentEvent, EventKind
from .queue import UploadQueue

logger = logging.getLogger(__name__)


def error_kind(error: Exception) -> str:
    """Short name of a cache error class, used in events and dead-letter records."""
    if isinstance(error, UnauthorizedError):
        return "unauthorized"
    if isinstance(error, UnreachableError):
        return "unreachable"
    if isinstance(error, CacheServerError):
        return "server_error"
    if isinstance(error, CacheClientRequestError):
        return "client_error"
    return "internal_error"


def backoff_delay(
    attempt: int, retry: RetryConfig, rng: Optional[random.Random] = None
) -> float:
    """
    Delay before the attempt following ``attempt`` (1-based).

    ``base_delay * 2 ** (attempt - 1)``, capped at ``max_delay``, then reduced
    by a random fraction of up to ``jitter``.
    """
    rng = rng or random
    delay = min(retry.base_delay * (2 ** (attempt - 1)), retry.max_delay)
    if retry.jitter:
        delay *= 1 - retry.jitter * rng.random()
    return max(delay, 0.0)


@dataclass(frozen=True)
class JobOutcome:
    """
    How processing a job ended.

    Attributes:
        status: 'uploaded', 'already_cached', 'no_token', 'failed' or 'cancelled'
        reason: Error kind (for failures) or dead-letter reason
        error: Error message
    """

    status: str
    reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in ("uploaded", "already_cached")


class UploadWorkerPool:
    """
    Fixed-size pool of upload threads.

    Attributes:
        queue: Source of jobs
        client: Cache transport
        credentials: Token source, consulted on every attempt
        retry: Retry and backoff parameters
        dead_letters: Where given-up jobs are persisted
        size: Number of worker threads
        skip_existing: Ask the cache before pushing and skip paths it has
        diagnose_failures: Probe the cache after a terminal failure and log
            whether it is reachable
    """

    def __init__(
        self,
        queue: UploadQueue,
        client: CacheClient,
        credentials: CredentialProvider,
        retry: RetryConfig,
        dead_letters: DeadLetterLog,
        emit: Callable[[AgentEvent], None],
        size: int = 4,
        skip_existing: bool = False,
        diagnose_failures: bool = True,
        rng: Optional[random.Random] = None,
    ):
        if size < 1:
            raise ValueError(f"Worker pool size must be at least 1, got {size}")

        self.queue = queue
        self.client = client
        self.credentials = credentials
        self.retry = retry
        self.dead_letters = dead_letters
        self.size = size
        self.skip_existing = skip_existing
        self.diagnose_failures = diagnose_failures
        self._emit = emit
        self._rng = rng or random.Random()

        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._active: Dict[Tuple[str, str], UploadJob] = {}
        self._threads: List[threading.Thread] = []
        self._missing_token_logged: Set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the worker threads."""
        if self._threads:
            return
        for index in range(self.size):
            thread = threading.Thread(
                target=self._worker_loop, name=f"pushagent-worker-{index}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        logger.info(f"Started {self.size} upload workers")

    def stop(self, grace: float) -> List[UploadJob]:
        """
        Wait for workers to finish, then cancel whatever is still in flight.

        The queue must already be closed, otherwise idle workers keep waiting
        for jobs until ``grace`` runs out.

        Args:
            grace: Seconds to let in-flight uploads finish

        Returns:
            Jobs that were still in flight when the grace period ended; they
            have been written to the dead-letter log with reason ``cancelled``
        """
        deadline = time.monotonic() + grace
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))

        self._cancel.set()
        with self._lock:
            abandoned = list(self._active.values())
            self._active.clear()

        for job in abandoned:
            logger.warning(
                f"Cancelling in-flight upload of {job.store_path} -> {job.cache_name}"
            )
            self._dead_letter(job, "cancelled", "shutdown grace period expired")

        self._threads = [t for t in self._threads if t.is_alive()]
        if self._threads:
            logger.debug(f"{len(self._threads)} workers still blocked in network I/O")
        return abandoned

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def active_jobs(self) -> List[UploadJob]:
        with self._lock:
            return list(self._active.values())

    def _worker_loop(self):
        while True:
            job = self.queue.dequeue()
            if job is None:
                return

            with self._lock:
                self._active[job.key] = job
            try:
                outcome = self._process_safely(job)
                with self._lock:
                    owned = self._active.pop(job.key, None) is not None
                if owned:
                    self._record(job, outcome)
            finally:
                self.queue.complete(job)

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def handle(self, job: UploadJob) -> JobOutcome:
        """Process a job on the calling thread and record the outcome."""
        outcome = self._process_safely(job)
        self._record(job, outcome)
        return outcome

    def _process_safely(self, job: UploadJob) -> JobOutcome:
        try:
            return self.process(job)
        except Exception as e:
            logger.error(
                f"Unexpected error uploading {job.store_path}: {e}", exc_info=True
            )
            return JobOutcome("failed", "internal_error", str(e))

    def process(self, job: UploadJob) -> JobOutcome:
        """
        Run the attempt loop for one job without recording the outcome.

        Increments ``job.attempts`` once per push attempt.
        """
        while True:
            if self._cancel.is_set():
                return JobOutcome("cancelled", "cancelled")

            token = self.credentials.get_token(job.cache_name)
            if token is None:
                self._log_missing_token(job.cache_name)
                return JobOutcome("no_token", "no_token", "no token available")

            try:
                if self.skip_existing and job.attempts == 0:
                    if self._already_cached(job, token):
                        return JobOutcome("already_cached")

                job.attempts += 1
                logger.debug(
                    f"Pushing {job.store_path} -> {job.cache_name} "
                    f"(attempt {job.attempts}/{self.retry.max_attempts})"
                )
                self.client.push(job.cache_name, job.store_path, token)
                return JobOutcome("uploaded")

            except CacheClientError as e:
                kind = error_kind(e)
                if not e.retryable:
                    logger.warning(
                        f"Push of {job.store_path} -> {job.cache_name} failed "
                        f"({kind}), not retrying: {e}"
                    )
                    return JobOutcome("failed", kind, str(e))

                if job.attempts >= self.retry.max_attempts:
                    logger.warning(
                        f"Push of {job.store_path} -> {job.cache_name} failed "
                        f"after {job.attempts} attempts: {e}"
                    )
                    return JobOutcome("failed", kind, str(e))

                delay = backoff_delay(job.attempts, self.retry, self._rng)
                logger.warning(
                    f"Push attempt {job.attempts} of {job.store_path} failed "
                    f"({kind}): {e}. Retrying in {delay:.1f}s..."
                )
            finally:
                token.wipe()

            if self._cancel.wait(delay):
                return JobOutcome("cancelled", "cancelled")

    def _already_cached(self, job: UploadJob, token) -> bool:
        try:
            present = self.client.has_path(job.cache_name, job.store_path, token)
        except CacheClientError as e:
            logger.debug(f"Existence check for {job.store_path} failed: {e}")
            return False
        if present:
            logger.info(f"{job.store_path} already in {job.cache_name}, skipping push")
        return present

    def _log_missing_token(self, cache_name: str):
        with self._lock:
            first = cache_name not in self._missing_token_logged
            self._missing_token_logged.add(cache_name)
        if first:
            logger.warning(
                f"No token available for cache '{cache_name}'; "
                "skipping uploads to it until one is provided"
            )

    # ------------------------------------------------------------------
    # Outcome reporting
    # ------------------------------------------------------------------

    def _record(self, job: UploadJob, outcome: JobOutcome):
        if outcome.succeeded:
            self._publish(AgentEvent.for_job(EventKind.UPLOADED, job))
            return

        if outcome.status == "cancelled":
            self._dead_letter(job, "cancelled", outcome.error)
            return

        if outcome.status == "no_token":
            self._publish(AgentEvent.for_job(EventKind.SKIPPED, job, "no_token"))
            self._dead_letter(job, "no_token", outcome.error)
            return

        self._publish(
            AgentEvent.for_job(EventKind.FAILED, job, outcome.reason, outcome.error)
        )
        reason = outcome.reason
        if reason in ("unreachable", "server_error"):
            reason = "exhausted"
        self._dead_letter(job, reason, outcome.error)

        if self.diagnose_failures:
            self._diagnose(job)

    def _dead_letter(self, job: UploadJob, reason: str, error: Optional[str]):
        try:
            self.dead_letters.append(job, reason, error)
        except DeadLetterError as e:
            logger.error(f"Lost dead-letter record for {job.store_path}: {e}")
            return
        self._publish(AgentEvent.for_job(EventKind.DEAD_LETTERED, job, reason, error))

    def _diagnose(self, job: UploadJob):
        """Tell a permission problem apart from an unreachable server."""
        token = self.credentials.get_token(job.cache_name)
        try:
            info = self.client.probe(job.cache_name, token)
            logger.warning(
                f"Cache {info} is reachable; the failed push of "
                f"{job.store_path} is likely a permission or request issue"
            )
        except CacheClientError as e:
            logger.warning(
                f"Cache '{job.cache_name}' unreachable or authentication failed: {e}"
            )
        finally:
            if token is not None:
                token.wipe()

    def _publish(self, event: AgentEvent):
        try:
            self._emit(event)
        except Exception as e:
            logger.error(f"Failed to publish {event.kind.value} event: {e}")
