"""
Remote binary-cache transport.

This module defines the CacheClient interface the worker pool pushes through
and an HTTP implementation of the cache wire protocol:

- push:   ``POST {endpoint}/cache/{cache}`` with a gzipped tar of the path
- probe:  ``GET  {endpoint}/cache/{cache}/info``
- exists: ``HEAD {endpoint}/cache/{cache}/paths/{basename}``

Every request carries ``Authorization: Bearer <token>``. Responses map to
errors as follows:

- 2xx: success
- 401/403: UnauthorizedError (terminal)
- other 4xx: CacheClientRequestError (terminal)
- 5xx: CacheServerError (retryable)
- connection failure or timeout: UnreachableError (retryable)

Usage:
    from pushagent.caching.client import HttpCacheClient

    client = HttpCacheClient(config.caches, timeout=30)
    ack = client.push("main", "/nix/store/abc-hello", token)
"""

import hashlib
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional
from urllib.parse import quote

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

from pushagent.config.parser import CacheTarget
from pushagent.core.exceptions import (
    CacheClientError,
    CacheClientRequestError,
    CacheServerError,
    UnauthorizedError,
    UnreachableError,
)
from pushagent.core.filesystem import archive_path

from .credentials import SecretToken, sanitize_for_logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushAck:
    """Acknowledgement of a successful push."""

    cache_name: str
    store_path: str
    status_code: int
    sha256: str
    size: int


@dataclass(frozen=True)
class ReachabilityInfo:
    """Result of probing a cache target."""

    cache_name: str
    endpoint: str
    status_code: int
    latency_seconds: float

    def __str__(self) -> str:
        return (
            f"{self.cache_name} at {self.endpoint}: HTTP {self.status_code} "
            f"in {self.latency_seconds * 1000:.0f}ms"
        )


class CacheClient(ABC):
    """
    Abstract transport to remote cache targets.

    Operations raise CacheClientError subclasses on failure; the ``retryable``
    attribute of the raised error tells the caller whether to try again.
    """

    @abstractmethod
    def push(self, cache_name: str, path: str, token: SecretToken) -> PushAck:
        """
        Upload a store path to a cache.

        Args:
            cache_name: Target cache name
            path: Store path to upload
            token: Bearer token for the cache

        Returns:
            PushAck on success

        Raises:
            CacheClientError: On any failure
        """
        pass

    @abstractmethod
    def probe(self, cache_name: str, token: Optional[SecretToken]) -> ReachabilityInfo:
        """
        Check that a cache is reachable and accepts the token.

        Raises:
            CacheClientError: On any failure
        """
        pass

    def has_path(self, cache_name: str, path: str, token: SecretToken) -> bool:
        """
        Query whether the cache already holds a store path.

        Transports that cannot answer return False so the path gets pushed.
        """
        return False

    def close(self):
        """Release transport resources."""
        pass


def classify_status(status_code: int, message: str) -> Optional[CacheClientError]:
    """
    Map an HTTP status code onto the cache error taxonomy.

    Args:
        status_code: HTTP status code
        message: Context for the error message

    Returns:
        The error to raise, or None for 2xx/3xx responses
    """
    if status_code < 400:
        return None
    if status_code in (401, 403):
        return UnauthorizedError(f"{message}: HTTP {status_code}", status_code)
    if status_code < 500:
        return CacheClientRequestError(f"{message}: HTTP {status_code}", status_code)
    return CacheServerError(f"{message}: HTTP {status_code}", status_code)


class HttpCacheClient(CacheClient):
    """
    HTTP implementation of the cache wire protocol using ``requests``.

    Attributes:
        targets: Cache targets by name
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        targets: Iterable[CacheTarget],
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.targets: Dict[str, CacheTarget] = {t.name: t for t in targets}
        self.timeout = timeout
        self.session = session or requests.Session()

    def push(self, cache_name: str, path: str, token: SecretToken) -> PushAck:
        target = self._target(cache_name)
        url = f"{target.endpoint}/cache/{quote(cache_name, safe='')}"

        try:
            payload = archive_path(path)
        except FileNotFoundError as e:
            raise CacheClientRequestError(str(e)) from e
        except OSError as e:
            raise CacheClientRequestError(f"Could not read {path}: {e}") from e

        digest = hashlib.sha256(payload).hexdigest()
        headers = self._headers(token)
        headers.update(
            {
                "Content-Type": "application/x-tar",
                "Content-Encoding": "gzip",
                "X-Store-Path": path,
                "X-Content-SHA256": digest,
            }
        )

        logger.debug(
            f"Pushing {path} to {url} ({len(payload)} bytes, "
            f"headers: {sanitize_for_logging(headers)})"
        )
        response = self._request("POST", url, f"push {path}", headers, data=payload)

        return PushAck(
            cache_name=cache_name,
            store_path=path,
            status_code=response.status_code,
            sha256=digest,
            size=len(payload),
        )

    def probe(self, cache_name: str, token: Optional[SecretToken]) -> ReachabilityInfo:
        target = self._target(cache_name)
        url = f"{target.endpoint}/cache/{quote(cache_name, safe='')}/info"

        start = time.monotonic()
        response = self._request("GET", url, "probe", self._headers(token))
        latency = time.monotonic() - start

        return ReachabilityInfo(
            cache_name=cache_name,
            endpoint=target.endpoint,
            status_code=response.status_code,
            latency_seconds=latency,
        )

    def has_path(self, cache_name: str, path: str, token: SecretToken) -> bool:
        target = self._target(cache_name)
        name = quote(Path(path).name, safe="")
        url = f"{target.endpoint}/cache/{quote(cache_name, safe='')}/paths/{name}"

        try:
            response = self.session.head(
                url, headers=self._headers(token), timeout=self.timeout
            )
        except (Timeout, ConnectionError, RequestException) as e:
            raise UnreachableError(f"exists {path}: {e}") from e

        if response.status_code == 404:
            return False
        error = classify_status(response.status_code, f"exists {path}")
        if error is not None:
            raise error
        return True

    def close(self):
        self.session.close()

    def _target(self, cache_name: str) -> CacheTarget:
        target = self.targets.get(cache_name)
        if target is None:
            raise CacheClientRequestError(f"Unknown cache: {cache_name}")
        return target

    def _headers(self, token: Optional[SecretToken]) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token.reveal()}"
        return headers

    def _request(
        self, method: str, url: str, what: str, headers: Dict[str, str], **kwargs
    ) -> requests.Response:
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except (Timeout, ConnectionError, RequestException) as e:
            raise UnreachableError(f"{what}: {e}") from e

        error = classify_status(response.status_code, what)
        if error is not None:
            raise error
        return response
