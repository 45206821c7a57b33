"""
The push agent: wires filter, queue, worker pool and transport together.

Usage:
    from pushagent.agent import PushAgent
    from pushagent.config import parse_config

    config = parse_config(Path("pushagent.yaml"))
    agent = PushAgent.from_config(config)
    agent.start()                      # refuses to run on a cache server
    agent.submit(BuildEvent("/nix/store/xyz-hello.drv",
                            frozenset({"/nix/store/abc-hello"})))
    agent.shutdown()
"""

import logging
import threading
from typing import List, Optional

from pushagent.caching.client import CacheClient, HttpCacheClient
from pushagent.caching.credentials import (
    CredentialProvider,
    TokenRefCredentialProvider,
)
from pushagent.config.parser import AgentConfig
from pushagent.core.exceptions import DeadLetterError
from pushagent.core.locking import LockManager
from pushagent.core.platform import get_host_identity

from .deadletter import DeadLetterLog, DeadLetterRecord
from .events import BuildEvent
from .filter import PathFilter
from .guard import check_not_self
from .jobs import UploadJob
from .observability import (
    AgentEvent,
    AgentStats,
    EventKind,
    EventSink,
    FanOutEventSink,
    LoggingEventSink,
)
from .queue import BackpressurePolicy, EnqueueResult, UploadQueue
from .workers import UploadWorkerPool

logger = logging.getLogger(__name__)


class PushAgent:
    """
    Binary-cache push agent.

    ``submit`` is the trigger interface: it filters an event's paths, queues
    one job per (path, push target) and returns. It never raises, so a cache
    problem can never fail the build that produced the event.

    Attributes:
        config: Immutable agent configuration
        queue: Pending and in-flight jobs
        pool: Upload workers
        stats: Event counters
    """

    def __init__(
        self,
        config: AgentConfig,
        client: CacheClient,
        credentials: CredentialProvider,
        dead_letters: DeadLetterLog,
        sink: Optional[EventSink] = None,
        host_identity: Optional[str] = None,
        path_filter: Optional[PathFilter] = None,
    ):
        """
        Initialize the agent.

        Args:
            config: Agent configuration
            client: Cache transport
            credentials: Token source
            dead_letters: Dead-letter log
            sink: Extra event consumer (events are always logged and counted)
            host_identity: Current host name (default: detected)
            path_filter: Upload filter (default: built from config)
        """
        self.config = config
        self.client = client
        self.credentials = credentials
        self.dead_letters = dead_letters
        self.host_identity = (
            host_identity if host_identity is not None else get_host_identity()
        )
        self.path_filter = path_filter or PathFilter(config.exclude_patterns)
        self.stats = AgentStats()

        sinks = [self.stats, LoggingEventSink()]
        if sink is not None:
            sinks.append(sink)
        self._sink = FanOutEventSink(*sinks)

        self.queue = UploadQueue(
            capacity=config.queue.capacity,
            policy=BackpressurePolicy(config.queue.policy),
            block_timeout=config.queue.block_timeout,
            on_evict=self._on_evict,
        )
        self.pool = UploadWorkerPool(
            queue=self.queue,
            client=client,
            credentials=credentials,
            retry=config.retry,
            dead_letters=dead_letters,
            emit=self._sink.emit,
            size=config.workers,
            skip_existing=config.skip_existing,
            diagnose_failures=config.diagnose_failures,
        )

        self._state_lock = threading.Lock()
        self._started = False
        self._stopped = False

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        sink: Optional[EventSink] = None,
        host_identity: Optional[str] = None,
    ) -> "PushAgent":
        """Build an agent with the HTTP transport and token-reference credentials."""
        lock_manager = LockManager(config.state_dir)
        return cls(
            config=config,
            client=HttpCacheClient(config.caches, timeout=config.timeout),
            credentials=TokenRefCredentialProvider(config.caches),
            dead_letters=DeadLetterLog(config.dead_letter_file, lock_manager),
            sink=sink,
            host_identity=host_identity,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """
        Check the host and start the workers.

        Raises:
            SelfUploadError: If this host is a configured cache server
        """
        with self._state_lock:
            if self._started:
                return
            check_not_self(self.host_identity, self.config.excluded_hosts)
            self.pool.start()
            self._started = True

        targets = ", ".join(t.name for t in self.config.push_targets)
        logger.info(
            f"pushagent started on {self.host_identity or 'unknown host'} "
            f"(targets: {targets}, workers: {self.config.workers})"
        )

    def shutdown(self, grace: Optional[float] = None) -> List[UploadJob]:
        """
        Stop the agent.

        New submissions are rejected immediately. Jobs still waiting in the
        queue are written to the dead-letter log (reason ``shutdown``).
        In-flight uploads get ``grace`` seconds to finish; whatever is left is
        cancelled and dead-lettered.

        Args:
            grace: Seconds to wait for in-flight uploads (default: config)

        Returns:
            All jobs that were dead-lettered by the shutdown
        """
        with self._state_lock:
            if self._stopped:
                return []
            self._stopped = True

        grace = self.config.shutdown_grace if grace is None else grace
        logger.info("Shutting down pushagent...")

        self.queue.close()
        pending = self.queue.drain()
        self._persist_unfinished(pending, "shutdown")

        cancelled = self.pool.stop(grace) if self._started else []
        self.client.close()

        logger.info(f"pushagent stopped: {self.stats}")
        return pending + cancelled

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued job has finished (one-shot mode)."""
        return self.queue.wait_idle(timeout)

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    # ------------------------------------------------------------------
    # Trigger interface
    # ------------------------------------------------------------------

    def submit(self, event: BuildEvent) -> int:
        """
        Queue the eligible outputs of a build.

        Never raises. Returns once the jobs are queued (or, with the ``block``
        policy and a full queue, once the block timeout has passed).

        Args:
            event: Build-completion event

        Returns:
            Number of jobs accepted
        """
        try:
            return self._submit(event)
        except Exception as e:
            logger.error(
                f"Failed to queue outputs of {event.derivation_id}: {e}", exc_info=True
            )
            return 0

    def _submit(self, event: BuildEvent) -> int:
        if not event.output_paths:
            logger.debug(f"No output paths for {event.derivation_id}, nothing to push")
            return 0

        if self._stopped:
            logger.warning(
                f"pushagent is shutting down, not queuing {event.derivation_id}"
            )
            return 0

        accepted = 0
        for path in sorted(event.output_paths):
            if not self.path_filter.accept(path, event.derivation_id):
                logger.info(f"Skipping source/temporary output: {path}")
                continue

            for target in self.config.push_targets:
                job = UploadJob(
                    store_path=path,
                    cache_name=target.name,
                    derivation_id=event.derivation_id,
                )
                if self._enqueue(job):
                    accepted += 1
        return accepted

    def enqueue_job(self, job: UploadJob) -> bool:
        """Queue a pre-built job (used by replay). Never raises."""
        try:
            return self._enqueue(job)
        except Exception as e:
            logger.error(f"Failed to queue {job.store_path}: {e}", exc_info=True)
            return False

    def _enqueue(self, job: UploadJob) -> bool:
        result = self.queue.enqueue(job)

        if result == EnqueueResult.ACCEPTED:
            self._sink.emit(AgentEvent.for_job(EventKind.ENQUEUED, job))
            return True

        if result == EnqueueResult.DEDUPLICATED:
            logger.debug(f"{job.store_path} -> {job.cache_name} already queued")
            self._sink.emit(AgentEvent.for_job(EventKind.DEDUPLICATED, job))
            return False

        if result == EnqueueResult.CLOSED:
            # shutdown() closed the queue after this submission started
            logger.warning(
                f"pushagent is shutting down, not queuing {job.store_path} "
                f"-> {job.cache_name}"
            )
            self._persist_unfinished([job], "shutdown")
            return False

        logger.error(
            f"Upload queue full, rejected {job.store_path} -> {job.cache_name}"
        )
        self._sink.emit(
            AgentEvent.for_job(EventKind.REJECTED, job, "queue_full", "queue full")
        )
        self._persist_unfinished([job], "queue_full")
        return False

    # ------------------------------------------------------------------
    # Dead-lettering
    # ------------------------------------------------------------------

    def _on_evict(self, job: UploadJob):
        self._sink.emit(AgentEvent.for_job(EventKind.DROPPED, job, "dropped"))
        self._persist_unfinished([job], "dropped")

    def _persist_unfinished(self, jobs: List[UploadJob], reason: str):
        if not jobs:
            return
        records = [DeadLetterRecord(job=job, reason=reason) for job in jobs]
        try:
            self.dead_letters.append_records(records)
        except DeadLetterError as e:
            logger.error(f"Could not persist {len(jobs)} {reason} jobs: {e}")
            return
        for job in jobs:
            self._sink.emit(AgentEvent.for_job(EventKind.DEAD_LETTERED, job, reason))
