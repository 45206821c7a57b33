"""
Bearer-token credentials for cache targets.

Tokens are produced by an external secret-management layer (for example a
decrypted secret file under ``/run/secrets``) and consumed here read-only.
They are resolved fresh for every upload attempt, so a rotated token is picked
up without restarting the agent, and they are never stored in component state.

Usage:
    from pushagent.caching.credentials import TokenRefCredentialProvider

    provider = TokenRefCredentialProvider(config.caches)
    token = provider.get_token("main")
    if token is not None:
        try:
            headers = {"Authorization": f"Bearer {token.reveal()}"}
        finally:
            token.wipe()
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

from pushagent.config.parser import CacheTarget

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"


class SecretToken:
    """
    An opaque bearer token.

    The token bytes live in a mutable buffer so that ``wipe()`` can zero them
    once an attempt is over. ``repr`` and ``str`` never show the value.
    """

    __slots__ = ("_buffer",)

    def __init__(self, value: str):
        self._buffer = bytearray(value.encode("utf-8"))

    def reveal(self) -> str:
        """Return the token value for building a request header."""
        return self._buffer.decode("utf-8")

    def wipe(self):
        """Zero the token buffer."""
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._buffer = bytearray()

    @property
    def wiped(self) -> bool:
        return not self._buffer

    def __bool__(self) -> bool:
        return bool(self._buffer)

    def __repr__(self) -> str:
        return f"SecretToken({REDACTED})"

    __str__ = __repr__


class CredentialProvider(ABC):
    """
    Abstract source of bearer tokens, keyed by cache name.

    Implementations return ``None`` when no token is available; they do not
    raise for a missing token.
    """

    @abstractmethod
    def get_token(self, cache_name: str) -> Optional[SecretToken]:
        """
        Resolve the token for a cache.

        Args:
            cache_name: Name of the cache target

        Returns:
            A fresh SecretToken, or None if the token is absent
        """
        pass


class StaticCredentialProvider(CredentialProvider):
    """Credential provider backed by an in-memory mapping."""

    def __init__(self, tokens: Mapping[str, str]):
        self._tokens = dict(tokens)

    def get_token(self, cache_name: str) -> Optional[SecretToken]:
        value = self._tokens.get(cache_name)
        if not value:
            return None
        return SecretToken(value)


class TokenRefCredentialProvider(CredentialProvider):
    """
    Resolve tokens through each cache target's ``token_ref``.

    Supported references:
    - ``file:<path>``: read and strip the file (e.g. a decrypted secret)
    - ``env:<VAR>``: read an environment variable

    Attributes:
        targets: Cache targets by name
    """

    def __init__(
        self,
        targets: Iterable[CacheTarget],
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.targets: Dict[str, CacheTarget] = {t.name: t for t in targets}
        self._environ = environ if environ is not None else os.environ

    def get_token(self, cache_name: str) -> Optional[SecretToken]:
        target = self.targets.get(cache_name)
        if target is None:
            logger.debug(f"No cache target named {cache_name}")
            return None

        scheme, _, ref = target.token_ref.partition(":")
        if scheme == "file":
            value = self._read_token_file(Path(ref))
        elif scheme == "env":
            value = self._environ.get(ref)
        else:
            logger.debug(
                f"Unsupported token reference scheme '{scheme}' for {cache_name}"
            )
            return None

        if not value:
            return None
        return SecretToken(value.strip())

    @staticmethod
    def _read_token_file(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug(f"Could not read token file {path}: {e}")
            return None


def sanitize_for_logging(headers: Mapping[str, str]) -> Dict[str, str]:
    """
    Remove sensitive values for safe logging.

    Args:
        headers: Request headers or environment variables

    Returns:
        Dictionary with sensitive values redacted
    """
    sanitized = {}
    for key, value in headers.items():
        lowered = key.lower()
        if (
            lowered == "authorization"
            or "token" in lowered
            or "password" in lowered
            or "secret" in lowered
        ):
            sanitized[key] = REDACTED
        else:
            sanitized[key] = value
    return sanitized
