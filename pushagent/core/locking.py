"""
Concurrent access control for pushagent.

This module provides file-based locking so that the running agent, the
post-build hook and the ``replay`` command can share one state directory.

Features:
- Cross-process locking (not just threading)
- Timeout support to prevent hanging
- Automatic cleanup on process death
- Non-blocking single-instance lock for the daemon

Usage:
    from pushagent.core.locking import LockManager

    lock_manager = LockManager(state_dir)
    with lock_manager.dead_letter_lock(timeout=10):
        # Safely append to or drain the dead-letter log
        pass

    with lock_manager.agent_lock():
        # This process owns the state directory
        run_agent()
"""

import logging
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout as LockTimeout

from .exceptions import AgentLockError

logger = logging.getLogger(__name__)


class LockManager:
    """
    Manages locks for resources under the agent state directory.

    Uses file-based locking with the `filelock` library for cross-platform
    compatibility and automatic cleanup on process death.

    Attributes:
        lock_dir: Directory where lock files are stored
    """

    def __init__(self, state_dir: Path):
        """
        Initialize lock manager.

        Args:
            state_dir: Agent state directory; locks live in ``state_dir/lock``
        """
        self.lock_dir = Path(state_dir) / "lock"
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def dead_letter_lock(self, timeout: int = 10):
        """
        Acquire the dead-letter log lock.

        Args:
            timeout: Maximum wait time in seconds (default: 10)

        Yields:
            None

        Raises:
            LockTimeout: If lock can't be acquired within timeout
        """
        lock_path = self.lock_dir / "dead-letter.lock"
        lock = FileLock(lock_path, timeout=timeout)

        try:
            with lock:
                logger.debug(f"Acquired dead-letter lock: {lock_path}")
                yield
                logger.debug(f"Released dead-letter lock: {lock_path}")
        except LockTimeout as e:
            logger.error(f"Could not acquire dead-letter lock after {timeout}s.")
            raise LockTimeout(
                f"Could not acquire dead-letter lock after {timeout}s."
            ) from e

    @contextmanager
    def agent_lock(self):
        """
        Claim the state directory for a running agent.

        Non-blocking: a second agent on the same state directory fails
        immediately instead of waiting.

        Yields:
            None

        Raises:
            AgentLockError: If another agent holds the lock
        """
        lock_path = self.lock_dir / "agent.lock"
        with try_lock(lock_path, timeout=0) as acquired:
            if not acquired:
                raise AgentLockError(
                    f"Another pushagent is already running with lock {lock_path}"
                )
            yield


@contextmanager
def try_lock(lock_path: Path, timeout: int = 0):
    """
    Try to acquire lock without blocking (or with short timeout).

    Args:
        lock_path: Path to lock file
        timeout: 0 for immediate (non-blocking), or seconds to wait

    Yields:
        bool: True if lock acquired, False otherwise

    Example:
        >>> with try_lock(Path('/tmp/my.lock'), timeout=0) as acquired:
        ...     if acquired:
        ...         do_work()
    """
    lock = FileLock(lock_path, timeout=timeout)

    acquired = False
    try:
        lock.acquire(timeout=timeout)
        acquired = True
        logger.debug(f"Acquired lock (try_lock): {lock_path}")
    except LockTimeout:
        logger.debug(f"Could not acquire lock (try_lock): {lock_path}")

    try:
        yield acquired
    finally:
        if acquired:
            lock.release()
            logger.debug(f"Released lock (try_lock): {lock_path}")


__all__ = [
    "LockManager",
    "try_lock",
    "LockTimeout",
]
