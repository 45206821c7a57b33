"""
Build-completion events and the spool directory that carries them.

The build tool runs the post-build hook once per finished build with
``DRV_PATH`` and a space-separated ``OUT_PATHS`` in the environment. The hook
turns that into a BuildEvent and writes it to the spool directory, which the
running agent's dispatcher polls. Writing a file and returning keeps the hook
fast and independent of whether the agent is up.
"""

import json
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, FrozenSet, Iterator, Mapping, Optional, Tuple

from pushagent.core.exceptions import SpoolError
from pushagent.core.filesystem import atomic_write

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildEvent:
    """One completed build: the derivation and the store paths it produced."""

    derivation_id: str
    output_paths: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_hook_environment(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "BuildEvent":
        """
        Build an event from the post-build hook environment.

        Args:
            environ: Environment mapping (default: ``os.environ``)

        Returns:
            The event; ``output_paths`` is empty if ``OUT_PATHS`` is unset
        """
        environ = os.environ if environ is None else environ
        out_paths = environ.get("OUT_PATHS", "")
        return cls(
            derivation_id=environ.get("DRV_PATH", ""),
            output_paths=frozenset(p for p in out_paths.split(" ") if p),
        )

    def to_dict(self) -> dict:
        return {
            "derivation_id": self.derivation_id,
            "output_paths": sorted(self.output_paths),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BuildEvent":
        paths = data.get("output_paths", [])
        if not isinstance(paths, list):
            raise TypeError("output_paths must be a list")
        return cls(
            derivation_id=str(data.get("derivation_id", "")),
            output_paths=frozenset(str(p) for p in paths),
        )


class SpoolDirectory:
    """
    A directory of pending BuildEvents, one JSON file per event.

    File names start with a nanosecond timestamp, so lexical order is arrival
    order. Files are written atomically; readers never see partial events.

    Attributes:
        path: Spool directory
    """

    SUFFIX = ".json"

    def __init__(self, path: Path):
        self.path = Path(path)

    def submit(self, event: BuildEvent) -> Path:
        """
        Write an event to the spool.

        Returns:
            Path of the spool file

        Raises:
            SpoolError: If the event cannot be written
        """
        name = f"{time.time_ns():020d}-{uuid.uuid4().hex[:8]}{self.SUFFIX}"
        target = self.path / name
        try:
            atomic_write(target, json.dumps(event.to_dict()))
        except OSError as e:
            raise SpoolError(f"Could not spool event to {target}: {e}") from e
        logger.debug(f"Spooled {event.derivation_id} to {target}")
        return target

    def pending(self) -> list:
        """Spool files in arrival order."""
        if not self.path.is_dir():
            return []
        return sorted(
            p
            for p in self.path.iterdir()
            if p.name.endswith(self.SUFFIX) and not p.name.startswith(".")
        )

    def entries(self) -> Iterator[Tuple[Path, BuildEvent]]:
        """
        Yield ``(spool_file, event)`` pairs oldest first.

        Files stay on disk until the caller passes them to ``remove`` or
        ``set_aside``. Malformed files are set aside and skipped.
        """
        for spool_file in self.pending():
            try:
                data = json.loads(spool_file.read_text(encoding="utf-8"))
                event = BuildEvent.from_dict(data)
            except FileNotFoundError:
                continue
            except (OSError, json.JSONDecodeError, TypeError, AttributeError) as e:
                logger.warning(f"Malformed spool file {spool_file}: {e}")
                self.set_aside(spool_file)
                continue
            yield spool_file, event

    def remove(self, spool_file: Path):
        """Delete a spool file whose event has been handled."""
        try:
            spool_file.unlink()
        except FileNotFoundError:
            pass

    def set_aside(self, spool_file: Path):
        """Rename a spool file with a ``.bad`` suffix so it is not read again."""
        try:
            spool_file.replace(spool_file.with_name(spool_file.name + ".bad"))
        except OSError as e:
            logger.error(f"Could not set aside {spool_file}: {e}")


class EventDispatcher:
    """
    Background thread that feeds spooled events to a handler.

    Attributes:
        spool: Spool directory to poll
        handler: Called with each BuildEvent
        poll_interval: Seconds between polls when the spool is empty
    """

    def __init__(
        self,
        spool: SpoolDirectory,
        handler: Callable[[BuildEvent], None],
        poll_interval: float = 1.0,
    ):
        self.spool = spool
        self.handler = handler
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name="pushagent-dispatcher", daemon=True
        )
        self._thread.start()
        logger.info(f"Watching spool directory {self.spool.path}")

    def stop(self, timeout: Optional[float] = None):
        """Stop polling. Events still on disk stay there for the next run."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def poll_once(self) -> int:
        """
        Dispatch everything currently spooled; returns the event count.

        A spool file is removed only after the handler accepted its event.
        If the handler raises, the file is set aside as ``.bad`` for
        inspection and polling continues with the next one.
        """
        count = 0
        for spool_file, event in self.spool.entries():
            if self._stop.is_set():
                break
            try:
                self.handler(event)
            except Exception as e:
                logger.error(
                    f"Handling spooled event {spool_file.name} failed: {e}",
                    exc_info=True,
                )
                self.spool.set_aside(spool_file)
                continue
            self.spool.remove(spool_file)
            count += 1
        return count

    def _run(self):
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Dispatcher poll failed: {e}", exc_info=True)
            self._stop.wait(self.poll_interval)
