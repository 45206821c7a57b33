"""
Circular-upload guard.

A cache server must not push its own builds back to itself. The agent checks
its host name against the configured cache-server host names once, before
starting, and refuses to run on a match.
"""

import logging
from typing import Iterable

from pushagent.core.exceptions import SelfUploadError

logger = logging.getLogger(__name__)


def _normalize(hostname: str) -> str:
    return hostname.strip().rstrip(".").lower()


def is_self(host_identity: str, excluded_hostnames: Iterable[str]) -> bool:
    """
    Check whether the current host is one of the excluded cache servers.

    Comparison is case-insensitive and also matches the short host name,
    so ``cache1.example.com`` matches an excluded ``cache1`` and vice versa.

    Args:
        host_identity: Name of the current host
        excluded_hostnames: Host names that run the cache server

    Returns:
        True if the agent would be pushing to itself
    """
    host = _normalize(host_identity)
    if not host:
        return False

    short_host = host.split(".", 1)[0]
    for excluded in excluded_hostnames:
        name = _normalize(excluded)
        if not name:
            continue
        if name == host or name == short_host or name.split(".", 1)[0] == host:
            return True
    return False


def check_not_self(host_identity: str, excluded_hostnames: Iterable[str]) -> None:
    """
    Refuse to run on a cache server.

    Raises:
        SelfUploadError: If ``host_identity`` is an excluded host
    """
    excluded = list(excluded_hostnames)
    if is_self(host_identity, excluded):
        logger.error(
            f"Host '{host_identity}' is a cache server; refusing to start pushagent"
        )
        raise SelfUploadError(host_identity, excluded)
    logger.debug(f"Host '{host_identity}' is not an excluded cache server")
