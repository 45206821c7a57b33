"""
Core functionality for pushagent.

This package contains the foundational modules that other components depend on.
"""

from .exceptions import (
    PushAgentError,
    ConfigurationError,
    SelfUploadError,
    CacheClientError,
    UnauthorizedError,
    UnreachableError,
    CacheServerError,
    CacheClientRequestError,
    DeadLetterError,
    SpoolError,
    AgentLockError,
)

from .filesystem import (
    atomic_write,
    archive_path,
)

from .locking import (
    LockManager,
    try_lock,
    LockTimeout,
)

from .platform import (
    get_host_identity,
    clear_host_cache,
)

__all__ = [
    "PushAgentError",
    "ConfigurationError",
    "SelfUploadError",
    "CacheClientError",
    "UnauthorizedError",
    "UnreachableError",
    "CacheServerError",
    "CacheClientRequestError",
    "DeadLetterError",
    "SpoolError",
    "AgentLockError",
    "atomic_write",
    "archive_path",
    "LockManager",
    "try_lock",
    "LockTimeout",
    "get_host_identity",
    "clear_host_cache",
]
