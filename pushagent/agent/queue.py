"""
Bounded, deduplicating upload queue.

Holds pending upload jobs in FIFO order and tracks which jobs are in flight.
A job whose ``(store_path, cache_name)`` key is already pending or in flight
is not queued again. The number of pending jobs never exceeds the capacity;
what happens when the queue is full is decided by the backpressure policy:

- ``block``: wait up to ``block_timeout`` seconds for space, then reject
- ``drop-oldest``: evict the oldest pending job to make room
- ``reject``: reject the new job immediately

Pending jobs and the in-flight set are guarded by one condition variable.
"""

import logging
import threading
import time
from collections import OrderedDict
from enum import Enum
from typing import Callable, List, Optional, Set, Tuple

from .jobs import UploadJob

logger = logging.getLogger(__name__)


class BackpressurePolicy(str, Enum):
    """What ``enqueue`` does when the queue is full."""

    BLOCK = "block"
    DROP_OLDEST = "drop-oldest"
    REJECT = "reject"


class EnqueueResult(str, Enum):
    """Outcome of ``UploadQueue.enqueue``."""

    ACCEPTED = "accepted"
    DEDUPLICATED = "deduplicated"
    REJECTED_FULL = "rejected_full"
    CLOSED = "closed"


class UploadQueue:
    """
    Bounded FIFO of UploadJobs with dedup against pending and in-flight keys.

    Attributes:
        capacity: Maximum number of pending jobs
        policy: Backpressure policy applied when full
        block_timeout: Seconds ``block`` waits for space before rejecting
    """

    def __init__(
        self,
        capacity: int = 1024,
        policy: BackpressurePolicy = BackpressurePolicy.BLOCK,
        block_timeout: float = 5.0,
        on_evict: Optional[Callable[[UploadJob], None]] = None,
    ):
        """
        Initialize the queue.

        Args:
            capacity: Maximum number of pending jobs (>= 1)
            policy: Backpressure policy
            block_timeout: Wait limit for the ``block`` policy
            on_evict: Called with each job evicted by ``drop-oldest``,
                outside the queue lock

        Raises:
            ValueError: If capacity is less than 1
        """
        if capacity < 1:
            raise ValueError(f"Queue capacity must be at least 1, got {capacity}")

        self.capacity = capacity
        self.policy = BackpressurePolicy(policy)
        self.block_timeout = block_timeout
        self._on_evict = on_evict

        self._pending: "OrderedDict[Tuple[str, str], UploadJob]" = OrderedDict()
        self._in_flight: Set[Tuple[str, str]] = set()
        self._closed = False
        self._cond = threading.Condition()

    def enqueue(self, job: UploadJob) -> EnqueueResult:
        """
        Add a job unless its key is already pending or in flight.

        Args:
            job: Job to queue

        Returns:
            ACCEPTED, DEDUPLICATED, REJECTED_FULL, or CLOSED once
            ``close()`` has been called (also for a producer that was
            waiting for space).
        """
        evicted = None
        with self._cond:
            if self._closed:
                return EnqueueResult.CLOSED

            if job.key in self._pending or job.key in self._in_flight:
                return EnqueueResult.DEDUPLICATED

            if len(self._pending) >= self.capacity:
                if self.policy == BackpressurePolicy.REJECT:
                    return EnqueueResult.REJECTED_FULL

                if self.policy == BackpressurePolicy.DROP_OLDEST:
                    _, evicted = self._pending.popitem(last=False)
                else:
                    if not self._wait_for_space(job):
                        if self._closed:
                            return EnqueueResult.CLOSED
                        return EnqueueResult.REJECTED_FULL
                    # Another producer may have queued the same key meanwhile
                    if job.key in self._pending or job.key in self._in_flight:
                        return EnqueueResult.DEDUPLICATED

            self._pending[job.key] = job
            self._cond.notify_all()

        if evicted is not None:
            logger.warning(
                f"Queue full, dropped oldest job {evicted.store_path} "
                f"-> {evicted.cache_name}"
            )
            if self._on_evict is not None:
                self._on_evict(evicted)

        return EnqueueResult.ACCEPTED

    def _wait_for_space(self, job: UploadJob) -> bool:
        """Wait (lock held) until a slot frees up, the queue closes or time runs out."""
        deadline = time.monotonic() + self.block_timeout
        while len(self._pending) >= self.capacity and not self._closed:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(
                    f"Queue still full after {self.block_timeout}s: {job.store_path}"
                )
                return False
            self._cond.wait(remaining)
        return not self._closed

    def dequeue(self, timeout: Optional[float] = None) -> Optional[UploadJob]:
        """
        Take the oldest pending job and mark it in flight.

        Blocks until a job is available, the queue is closed or ``timeout``
        seconds pass.

        Returns:
            The job, or None on close or timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._pending and not self._closed:
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._cond.wait(remaining)

            if self._closed:
                return None

            key, job = self._pending.popitem(last=False)
            self._in_flight.add(key)
            self._cond.notify_all()
            return job

    def complete(self, job: UploadJob):
        """Release a job's in-flight key once it is finished, for good or ill."""
        with self._cond:
            self._in_flight.discard(job.key)
            self._cond.notify_all()

    def close(self):
        """Stop accepting jobs and wake every waiting producer and consumer."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def drain(self) -> List[UploadJob]:
        """Remove and return all pending jobs, oldest first."""
        with self._cond:
            jobs = list(self._pending.values())
            self._pending.clear()
            self._cond.notify_all()
            return jobs

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until nothing is pending or in flight.

        Returns:
            True if the queue went idle, False on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._pending or self._in_flight:
                if self._closed and not self._in_flight:
                    break
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                    self._cond.wait(remaining)
            return True

    @property
    def closed(self) -> bool:
        return self._closed

    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending)

    def in_flight_count(self) -> int:
        with self._cond:
            return len(self._in_flight)

    def in_flight_keys(self) -> Set[Tuple[str, str]]:
        with self._cond:
            return set(self._in_flight)

    def __len__(self) -> int:
        return self.pending_count()
