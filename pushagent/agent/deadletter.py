"""
Dead-letter log.

Jobs that exhausted their retries, failed terminally, were dropped for
backpressure or were still queued at shutdown are appended here as JSON
lines, so they can be inspected and replayed later. The file is shared
between the agent, the ``replay`` command and the one-shot ``push`` command,
so every access goes through the state directory's dead-letter lock.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from pushagent.core.exceptions import DeadLetterError
from pushagent.core.filesystem import atomic_write
from pushagent.core.locking import LockManager, LockTimeout

from .jobs import UploadJob

logger = logging.getLogger(__name__)


@dataclass
class DeadLetterRecord:
    """A dead-lettered job with the reason it was given up on."""

    job: UploadJob
    reason: str  # 'exhausted', 'unauthorized', 'client_error', 'no_token', ...
    error: Optional[str] = None
    recorded_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        data = self.job.to_dict()
        data.update(
            {"reason": self.reason, "error": self.error, "recorded_at": self.recorded_at}
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DeadLetterRecord":
        return cls(
            job=UploadJob.from_dict(data),
            reason=data.get("reason", "unknown"),
            error=data.get("error"),
            recorded_at=data.get("recorded_at", 0.0),
        )


class DeadLetterLog:
    """
    Append-only JSON Lines file of dead-lettered jobs.

    Attributes:
        path: Dead-letter file
        lock_manager: Provides the cross-process dead-letter lock
    """

    def __init__(self, path: Path, lock_manager: LockManager, lock_timeout: int = 10):
        self.path = Path(path)
        self.lock_manager = lock_manager
        self.lock_timeout = lock_timeout

    def append(self, job: UploadJob, reason: str, error: Optional[str] = None):
        """
        Persist a job.

        Raises:
            DeadLetterError: If the record cannot be written
        """
        record = DeadLetterRecord(job=job, reason=reason, error=error)
        self.append_records([record])

    def append_records(self, records: List[DeadLetterRecord]):
        """Persist several records under one lock acquisition."""
        if not records:
            return

        lines = "".join(json.dumps(r.to_dict(), sort_keys=True) + "\n" for r in records)
        try:
            with self.lock_manager.dead_letter_lock(timeout=self.lock_timeout):
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(lines)
        except (OSError, LockTimeout) as e:
            raise DeadLetterError(f"Could not write dead-letter log {self.path}: {e}")

        for record in records:
            logger.warning(
                f"Dead-lettered {record.job.store_path} -> {record.job.cache_name} "
                f"({record.reason})"
            )

    def read(self) -> List[DeadLetterRecord]:
        """Return every record; unparseable lines are skipped with a warning."""
        try:
            with self.lock_manager.dead_letter_lock(timeout=self.lock_timeout):
                return self._read_unlocked()
        except LockTimeout as e:
            raise DeadLetterError(str(e)) from e

    def drain(self) -> List[DeadLetterRecord]:
        """Return every record and truncate the log (for replay)."""
        try:
            with self.lock_manager.dead_letter_lock(timeout=self.lock_timeout):
                records = self._read_unlocked()
                if self.path.exists():
                    atomic_write(self.path, "")
                return records
        except (OSError, LockTimeout) as e:
            raise DeadLetterError(f"Could not drain dead-letter log {self.path}: {e}")

    def _read_unlocked(self) -> List[DeadLetterRecord]:
        if not self.path.exists():
            return []

        records = []
        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(DeadLetterRecord.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    logger.warning(
                        f"Skipping malformed dead-letter line {lineno} in {self.path}: {e}"
                    )
        return records

    def __len__(self) -> int:
        return len(self.read())
