"""
Centralized exception hierarchy for pushagent.

This module defines all custom exceptions used across the codebase
to eliminate duplication and provide clear exception semantics.
"""

from typing import Optional


# ============================================================================
# Base Exceptions
# ============================================================================


class PushAgentError(Exception):
    """Base exception for all pushagent errors."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(PushAgentError):
    """Raised when the agent configuration is unusable.

    Configuration errors are fatal at startup and never raised at runtime.
    """

    pass


class SelfUploadError(ConfigurationError):
    """Raised when the agent would push to a cache served by this host."""

    def __init__(self, host: str, excluded_hostnames):
        self.host = host
        self.excluded_hostnames = sorted(excluded_hostnames)
        super().__init__(
            f"pushagent must not run on cache server '{host}' "
            f"(excluded hosts: {', '.join(self.excluded_hostnames)}) "
            "to avoid circular uploads"
        )


# ============================================================================
# Cache Client Exceptions
# ============================================================================


class CacheClientError(PushAgentError):
    """Base exception for cache transport errors.

    Attributes:
        retryable: Whether the pool should retry the failed operation
        status_code: HTTP status code, if the server answered
    """

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class UnauthorizedError(CacheClientError):
    """Token was rejected (401/403). Not retried."""

    retryable = False


class UnreachableError(CacheClientError):
    """Network failure or timeout reaching the cache. Retried."""

    retryable = True


class CacheServerError(CacheClientError):
    """Server-side failure (5xx). Retried."""

    retryable = True


class CacheClientRequestError(CacheClientError):
    """Request rejected as invalid (other 4xx, missing local path). Not retried."""

    retryable = False


# ============================================================================
# Queue and Persistence Exceptions
# ============================================================================


class DeadLetterError(PushAgentError):
    """Raised when the dead-letter log cannot be read or written."""

    pass


class SpoolError(PushAgentError):
    """Raised when an event cannot be written to the spool directory."""

    pass


class AgentLockError(PushAgentError):
    """Raised when another agent already owns the state directory."""

    pass
