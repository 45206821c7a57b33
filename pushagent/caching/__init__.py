"""
Remote cache access for pushagent.

Modules:
    client: CacheClient interface and the HTTP wire-protocol implementation
    credentials: Bearer-token providers for cache targets
"""

from .client import (
    CacheClient,
    HttpCacheClient,
    PushAck,
    ReachabilityInfo,
    classify_status,
)
from .credentials import (
    CredentialProvider,
    SecretToken,
    StaticCredentialProvider,
    TokenRefCredentialProvider,
    sanitize_for_logging,
)

__all__ = [
    "CacheClient",
    "HttpCacheClient",
    "PushAck",
    "ReachabilityInfo",
    "classify_status",
    "CredentialProvider",
    "SecretToken",
    "StaticCredentialProvider",
    "TokenRefCredentialProvider",
    "sanitize_for_logging",
]
