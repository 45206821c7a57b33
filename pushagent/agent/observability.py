"""
Structured job events and counters.

Every job transition is published as an AgentEvent to an EventSink, which an
external metrics or log collector can consume. AgentStats keeps in-process
counters of the same events.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .jobs import UploadJob

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Job lifecycle events."""

    ENQUEUED = "enqueued"
    DEDUPLICATED = "deduplicated"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    UPLOADED = "uploaded"
    FAILED = "failed"
    DROPPED = "dropped"
    DEAD_LETTERED = "dead_lettered"


@dataclass(frozen=True)
class AgentEvent:
    """
    One job lifecycle event.

    ``error_kind`` names the failure class for FAILED events
    (``unauthorized``, ``unreachable``, ``server_error``, ``client_error``,
    ``no_token``) and the reason for DROPPED/DEAD_LETTERED events.
    """

    kind: EventKind
    store_path: str
    cache_name: str
    derivation_id: str = ""
    attempts: int = 0
    error_kind: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def for_job(
        cls,
        kind: EventKind,
        job: UploadJob,
        error_kind: Optional[str] = None,
        error: Optional[str] = None,
    ) -> "AgentEvent":
        return cls(
            kind=kind,
            store_path=job.store_path,
            cache_name=job.cache_name,
            derivation_id=job.derivation_id,
            attempts=job.attempts,
            error_kind=error_kind,
            error=error,
        )

    def to_dict(self) -> dict:
        data = {
            "event": self.kind.value,
            "store_path": self.store_path,
            "cache": self.cache_name,
            "derivation": self.derivation_id,
            "attempts": self.attempts,
            "timestamp": self.timestamp,
        }
        if self.error_kind:
            data["error_kind"] = self.error_kind
        if self.error:
            data["error"] = self.error
        return data


class EventSink(ABC):
    """Consumer of agent events."""

    @abstractmethod
    def emit(self, event: AgentEvent) -> None:
        pass


class LoggingEventSink(EventSink):
    """Write each event as one JSON log line."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logging.getLogger("pushagent.events")

    def emit(self, event: AgentEvent) -> None:
        level = logging.INFO
        if event.kind in (EventKind.FAILED, EventKind.DEAD_LETTERED, EventKind.DROPPED):
            level = logging.WARNING
        elif event.kind in (EventKind.DEDUPLICATED, EventKind.SKIPPED):
            level = logging.DEBUG
        self.log.log(level, json.dumps(event.to_dict(), sort_keys=True))


class RecordingEventSink(EventSink):
    """Keep events in memory (for tests and the one-shot commands)."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[AgentEvent] = []

    def emit(self, event: AgentEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_kind(self, kind: EventKind) -> List[AgentEvent]:
        with self._lock:
            return [e for e in self.events if e.kind == kind]


class FanOutEventSink(EventSink):
    """Forward events to several sinks; a failing sink does not stop the others."""

    def __init__(self, *sinks: EventSink):
        self.sinks = list(sinks)

    def emit(self, event: AgentEvent) -> None:
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception as e:
                logger.error(f"Event sink {type(sink).__name__} failed: {e}")


class AgentStats(EventSink):
    """Thread-safe counters of agent events."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {kind.value: 0 for kind in EventKind}
        self._counts["unauthorized"] = 0

    def emit(self, event: AgentEvent) -> None:
        with self._lock:
            self._counts[event.kind.value] += 1
            if event.kind == EventKind.FAILED and event.error_kind == "unauthorized":
                self._counts["unauthorized"] += 1

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def __str__(self) -> str:
        counts = self.snapshot()
        return (
            f"AgentStats(enqueued={counts['enqueued']}, "
            f"uploaded={counts['uploaded']}, failed={counts['failed']}, "
            f"unauthorized={counts['unauthorized']}, "
            f"dead_lettered={counts['dead_lettered']}, dropped={counts['dropped']})"
        )
