"""Upload job model."""

import time
from dataclasses import dataclass, field
from typing import Tuple


@dataclass
class UploadJob:
    """
    A store path waiting to be pushed to one cache.

    Attributes:
        store_path: Output path to upload
        cache_name: Target cache
        derivation_id: Derivation that produced the path
        enqueue_time: Unix timestamp of creation
        attempts: Upload attempts made so far
    """

    store_path: str
    cache_name: str
    derivation_id: str = ""
    enqueue_time: float = field(default_factory=time.time)
    attempts: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        """Deduplication key."""
        return (self.store_path, self.cache_name)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "store_path": self.store_path,
            "cache_name": self.cache_name,
            "derivation_id": self.derivation_id,
            "enqueue_time": self.enqueue_time,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UploadJob":
        return cls(
            store_path=data["store_path"],
            cache_name=data["cache_name"],
            derivation_id=data.get("derivation_id", ""),
            enqueue_time=data.get("enqueue_time", time.time()),
            attempts=data.get("attempts", 0),
        )
