"""
Unit tests for the bounded, deduplicating upload queue.
"""

import threading
import time

import pytest

from pushagent.agent.jobs import UploadJob
from pushagent.agent.queue import BackpressurePolicy, EnqueueResult, UploadQueue


def job(path: str, cache: str = "main") -> UploadJob:
    return UploadJob(store_path=path, cache_name=cache, derivation_id=f"{path}.drv")


class TestUploadQueueBasics:
    """FIFO and dedup behavior."""

    def test_invalid_capacity(self):
        with pytest.raises(ValueError, match="at least 1"):
            UploadQueue(capacity=0)

    def test_fifo_order(self):
        queue = UploadQueue(capacity=4)
        for name in ("a", "b", "c"):
            assert queue.enqueue(job(f"/store/{name}")) == EnqueueResult.ACCEPTED

        assert [queue.dequeue(timeout=0).store_path for _ in range(3)] == [
            "/store/a",
            "/store/b",
            "/store/c",
        ]

    def test_duplicate_pending_job(self):
        """Queuing the same path twice keeps one job."""
        queue = UploadQueue(capacity=4)

        assert queue.enqueue(job("/store/a")) == EnqueueResult.ACCEPTED
        assert queue.enqueue(job("/store/a")) == EnqueueResult.DEDUPLICATED
        assert len(queue) == 1

    def test_duplicate_in_flight_job(self):
        """A path being uploaded is not queued again."""
        queue = UploadQueue(capacity=4)
        queue.enqueue(job("/store/a"))
        in_flight = queue.dequeue(timeout=0)

        assert queue.enqueue(job("/store/a")) == EnqueueResult.DEDUPLICATED
        assert queue.in_flight_keys() == {("/store/a", "main")}

        queue.complete(in_flight)
        assert queue.enqueue(job("/store/a")) == EnqueueResult.ACCEPTED

    def test_same_path_different_cache_is_not_duplicate(self):
        queue = UploadQueue(capacity=4)

        assert queue.enqueue(job("/store/a", "main")) == EnqueueResult.ACCEPTED
        assert queue.enqueue(job("/store/a", "backup")) == EnqueueResult.ACCEPTED

    def test_dequeue_timeout_returns_none(self):
        queue = UploadQueue(capacity=1)
        assert queue.dequeue(timeout=0.01) is None

    def test_dequeue_wakes_on_enqueue(self):
        queue = UploadQueue(capacity=1)
        result = []

        consumer = threading.Thread(target=lambda: result.append(queue.dequeue(timeout=5)))
        consumer.start()
        time.sleep(0.05)
        queue.enqueue(job("/store/a"))
        consumer.join(5)

        assert result[0].store_path == "/store/a"


class TestBackpressure:
    """Capacity bound and full-queue policies."""

    def test_reject_policy(self):
        queue = UploadQueue(capacity=2, policy=BackpressurePolicy.REJECT)
        queue.enqueue(job("/store/a"))
        queue.enqueue(job("/store/b"))

        assert queue.enqueue(job("/store/c")) == EnqueueResult.REJECTED_FULL
        assert len(queue) == 2

    def test_drop_oldest_policy(self):
        evicted = []
        queue = UploadQueue(
            capacity=2, policy=BackpressurePolicy.DROP_OLDEST, on_evict=evicted.append
        )
        queue.enqueue(job("/store/a"))
        queue.enqueue(job("/store/b"))

        assert queue.enqueue(job("/store/c")) == EnqueueResult.ACCEPTED
        assert [j.store_path for j in evicted] == ["/store/a"]
        assert [j.store_path for j in queue.drain()] == ["/store/b", "/store/c"]

    def test_block_policy_times_out_then_rejects(self):
        queue = UploadQueue(
            capacity=1, policy=BackpressurePolicy.BLOCK, block_timeout=0.05
        )
        queue.enqueue(job("/store/a"))

        start = time.monotonic()
        assert queue.enqueue(job("/store/b")) == EnqueueResult.REJECTED_FULL
        assert time.monotonic() - start >= 0.04

    def test_block_policy_accepts_when_space_frees(self):
        queue = UploadQueue(capacity=1, policy=BackpressurePolicy.BLOCK, block_timeout=5)
        queue.enqueue(job("/store/a"))

        def consume():
            time.sleep(0.05)
            queue.dequeue(timeout=1)

        consumer = threading.Thread(target=consume)
        consumer.start()
        assert queue.enqueue(job("/store/b")) == EnqueueResult.ACCEPTED
        consumer.join(5)

    def test_policy_accepts_config_strings(self):
        queue = UploadQueue(capacity=1, policy="drop-oldest")
        assert queue.policy == BackpressurePolicy.DROP_OLDEST

    @pytest.mark.parametrize(
        "policy",
        [BackpressurePolicy.BLOCK, BackpressurePolicy.DROP_OLDEST, BackpressurePolicy.REJECT],
    )
    def test_never_exceeds_capacity_under_concurrency(self, policy):
        queue = UploadQueue(capacity=5, policy=policy, block_timeout=0.01)
        peak = []

        def produce(offset):
            for i in range(50):
                queue.enqueue(job(f"/store/{offset}-{i}"))
                peak.append(queue.pending_count())

        producers = [threading.Thread(target=produce, args=(n,)) for n in range(4)]
        for producer in producers:
            producer.start()
        for producer in producers:
            producer.join(10)

        assert max(peak) <= 5
        assert len(queue) <= 5


class TestShutdown:
    """close() and drain()."""

    def test_close_wakes_consumer(self):
        queue = UploadQueue(capacity=1)
        result = []

        consumer = threading.Thread(target=lambda: result.append(queue.dequeue()))
        consumer.start()
        time.sleep(0.05)
        queue.close()
        consumer.join(5)

        assert result == [None]

    def test_closed_queue_reports_closed(self):
        """A closed queue is reported as closed, not as full."""
        queue = UploadQueue(capacity=1)
        queue.close()
        assert queue.enqueue(job("/store/a")) == EnqueueResult.CLOSED

    def test_close_wakes_blocked_producer(self):
        queue = UploadQueue(capacity=1, block_timeout=10)
        queue.enqueue(job("/store/a"))
        result = []

        producer = threading.Thread(
            target=lambda: result.append(queue.enqueue(job("/store/b")))
        )
        producer.start()
        time.sleep(0.05)
        queue.close()
        producer.join(5)

        assert result == [EnqueueResult.CLOSED]

    def test_drain_removes_pending(self):
        queue = UploadQueue(capacity=4)
        queue.enqueue(job("/store/a"))
        queue.enqueue(job("/store/b"))

        drained = queue.drain()

        assert [j.store_path for j in drained] == ["/store/a", "/store/b"]
        assert len(queue) == 0

    def test_wait_idle(self):
        queue = UploadQueue(capacity=4)
        queue.enqueue(job("/store/a"))
        assert queue.wait_idle(timeout=0.01) is False

        in_flight = queue.dequeue(timeout=0)
        threading.Timer(0.05, queue.complete, args=(in_flight,)).start()

        assert queue.wait_idle(timeout=5) is True
