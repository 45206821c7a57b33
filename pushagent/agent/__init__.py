"""
The push agent.

This package receives build-completion events, filters and queues their
outputs, and uploads them to remote cache targets.

Modules:
    agent: PushAgent, the wiring of everything below
    events: Build events, the spool directory and its dispatcher
    filter: Upload eligibility filter
    guard: Refuses to run on a cache server
    queue: Bounded, deduplicating upload queue
    workers: Upload worker pool with retry and backoff
    deadletter: Persistent log of given-up jobs
    observability: Job events and counters
"""

from .agent import PushAgent
from .deadletter import DeadLetterLog, DeadLetterRecord
from .events import BuildEvent, EventDispatcher, SpoolDirectory
from .filter import PathFilter
from .guard import check_not_self, is_self
from .jobs import UploadJob
from .observability import (
    AgentEvent,
    AgentStats,
    EventKind,
    EventSink,
    FanOutEventSink,
    LoggingEventSink,
    RecordingEventSink,
)
from .queue import BackpressurePolicy, EnqueueResult, UploadQueue
from .workers import JobOutcome, UploadWorkerPool, backoff_delay, error_kind

__all__ = [
    "PushAgent",
    "DeadLetterLog",
    "DeadLetterRecord",
    "BuildEvent",
    "EventDispatcher",
    "SpoolDirectory",
    "PathFilter",
    "check_not_self",
    "is_self",
    "UploadJob",
    "AgentEvent",
    "AgentStats",
    "EventKind",
    "EventSink",
    "FanOutEventSink",
    "LoggingEventSink",
    "RecordingEventSink",
    "BackpressurePolicy",
    "EnqueueResult",
    "UploadQueue",
    "JobOutcome",
    "UploadWorkerPool",
    "backoff_delay",
    "error_kind",
]
