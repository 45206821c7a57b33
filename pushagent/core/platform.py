"""
Host identity detection.

The circular-upload guard compares the current host against the configured
cache-server hostnames; this module supplies the current host name.
"""

import logging
import platform
import socket
from functools import lru_cache

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_host_identity() -> str:
    """
    Return the name of the current host.

    Prefers ``socket.gethostname()`` and falls back to ``platform.node()``.
    Result is cached for the process lifetime.

    Returns:
        Host name (may be empty if the OS reports none)
    """
    try:
        host = socket.gethostname()
    except OSError as e:
        logger.debug(f"gethostname() failed, falling back to platform.node(): {e}")
        host = ""

    if not host:
        host = platform.node()

    logger.debug(f"Detected host identity: {host}")
    return host


def clear_host_cache():
    """Clear the cached host identity (used by tests)."""
    get_host_identity.cache_clear()
