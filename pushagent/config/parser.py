"""YAML configuration parser for pushagent.

This module provides parsing and validation for pushagent.yaml configuration files.
Configuration is loaded once at startup into frozen dataclasses and passed
explicitly to every component.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

import yaml

from pushagent.core.exceptions import ConfigurationError

DEFAULT_TOKEN_ENV = "ATTIC_CLIENT_JWT_TOKEN"
DEFAULT_EXCLUDED_HOSTS = ("atticd", "cache-server", "cache-build-server")
DEFAULT_EXCLUDE_PATTERNS = ("*-source.drv", "*tmp*")
DEFAULT_STATE_DIR = "~/.pushagent"

VALID_POLICIES = ("block", "drop-oldest", "reject")


class ConfigError(ConfigurationError):
    """Configuration parsing or validation error."""

    pass


@dataclass(frozen=True)
class CacheTarget:
    """A remote cache the agent pushes to.

    ``token_ref`` is an opaque handle resolved by the credential provider
    (``file:<path>`` or ``env:<VAR>``).
    """

    name: str
    endpoint: str
    token_ref: str


@dataclass(frozen=True)
class QueueConfig:
    """Upload queue bounds and backpressure."""

    capacity: int = 1024
    policy: str = "block"  # 'block', 'drop-oldest', 'reject'
    block_timeout: float = 5.0


@dataclass(frozen=True)
class RetryConfig:
    """Retry and backoff parameters for uploads."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5  # fraction of the delay randomised


@dataclass(frozen=True)
class AgentConfig:
    """Complete pushagent configuration."""

    version: int
    caches: Tuple[CacheTarget, ...]
    push_to: Tuple[str, ...] = ()
    workers: int = 4
    timeout: float = 30.0
    queue: QueueConfig = field(default_factory=QueueConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    exclude_patterns: Tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS
    excluded_hosts: Tuple[str, ...] = DEFAULT_EXCLUDED_HOSTS
    state_dir: Path = Path(DEFAULT_STATE_DIR).expanduser()
    shutdown_grace: float = 30.0
    poll_interval: float = 1.0
    skip_existing: bool = False
    diagnose_failures: bool = True

    def get_target(self, name: str) -> Optional[CacheTarget]:
        """Return the cache target called ``name``, if configured."""
        for target in self.caches:
            if target.name == name:
                return target
        return None

    @property
    def push_targets(self) -> Tuple[CacheTarget, ...]:
        """Targets every accepted path is pushed to."""
        if not self.push_to:
            return self.caches
        return tuple(t for t in self.caches if t.name in self.push_to)

    @property
    def spool_dir(self) -> Path:
        return self.state_dir / "spool"

    @property
    def dead_letter_file(self) -> Path:
        return self.state_dir / "dead-letter.jsonl"


def parse_config(config_path: Path) -> AgentConfig:
    """
    Parse pushagent.yaml configuration file.

    Args:
        config_path: Path to pushagent.yaml

    Returns:
        Parsed and validated configuration

    Raises:
        ConfigError: If configuration is invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    return parse_config_data(data)


def parse_config_data(data: dict) -> AgentConfig:
    """Parse and validate an already-loaded configuration mapping."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    if "version" not in data:
        raise ConfigError("Missing required field: version")

    if data["version"] != 1:
        raise ConfigError(f"Unsupported version: {data['version']} (expected 1)")

    if "caches" not in data or not data["caches"]:
        raise ConfigError("At least one cache must be defined")

    caches = []
    cache_names = set()

    for cache_data in data["caches"]:
        target = _parse_cache(cache_data)

        if target.name in cache_names:
            raise ConfigError(f"Duplicate cache name: {target.name}")

        cache_names.add(target.name)
        caches.append(target)

    push_to = tuple(_as_list(data.get("push_to", []), "push_to"))
    for name in push_to:
        if name not in cache_names:
            raise ConfigError(f"push_to references undefined cache: {name}")

    workers = _positive_int(data.get("workers", 4), "workers")
    timeout = _positive_float(data.get("timeout", 30.0), "timeout")

    filter_data = data.get("filter") or {}
    exclude = tuple(
        _as_list(filter_data.get("exclude", DEFAULT_EXCLUDE_PATTERNS), "filter.exclude")
    )

    excluded_hosts = tuple(
        _as_list(data.get("excluded_hosts", DEFAULT_EXCLUDED_HOSTS), "excluded_hosts")
    )

    state_dir = Path(str(data.get("state_dir", DEFAULT_STATE_DIR))).expanduser()

    return AgentConfig(
        version=data["version"],
        caches=tuple(caches),
        push_to=push_to,
        workers=workers,
        timeout=timeout,
        queue=_parse_queue_config(data.get("queue") or {}),
        retry=_parse_retry_config(data.get("retry") or {}),
        exclude_patterns=exclude,
        excluded_hosts=excluded_hosts,
        state_dir=state_dir,
        shutdown_grace=_non_negative_float(
            data.get("shutdown_grace", 30.0), "shutdown_grace"
        ),
        poll_interval=_positive_float(data.get("poll_interval", 1.0), "poll_interval"),
        skip_existing=bool(data.get("skip_existing", False)),
        diagnose_failures=bool(data.get("diagnose_failures", True)),
    )


def _parse_cache(data: dict) -> CacheTarget:
    """Parse a cache target entry."""
    if not isinstance(data, dict):
        raise ConfigError("Each cache entry must be a mapping")

    for field_name in ("name", "endpoint"):
        if not data.get(field_name):
            raise ConfigError(f"Cache missing required field: {field_name}")

    endpoint = str(data["endpoint"]).rstrip("/")
    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(
            f"Invalid endpoint for cache {data['name']}: {endpoint} "
            "(expected http:// or https:// URL)"
        )

    token_sources = [k for k in ("token_ref", "token_file", "token_env") if k in data]
    if len(token_sources) > 1:
        raise ConfigError(
            f"Cache {data['name']} sets more than one of {', '.join(token_sources)}"
        )

    if "token_ref" in data:
        token_ref = str(data["token_ref"])
    elif "token_file" in data:
        token_ref = f"file:{Path(str(data['token_file'])).expanduser()}"
    else:
        token_ref = f"env:{data.get('token_env', DEFAULT_TOKEN_ENV)}"

    return CacheTarget(name=str(data["name"]), endpoint=endpoint, token_ref=token_ref)


def _parse_queue_config(data: dict) -> QueueConfig:
    """Parse queue configuration."""
    policy = data.get("policy", "block")
    if policy not in VALID_POLICIES:
        raise ConfigError(
            f"Invalid queue policy: {policy} (expected one of {list(VALID_POLICIES)})"
        )

    return QueueConfig(
        capacity=_positive_int(data.get("capacity", 1024), "queue.capacity"),
        policy=policy,
        block_timeout=_non_negative_float(
            data.get("block_timeout", 5.0), "queue.block_timeout"
        ),
    )


def _parse_retry_config(data: dict) -> RetryConfig:
    """Parse retry configuration."""
    jitter = _non_negative_float(data.get("jitter", 0.5), "retry.jitter")
    if jitter > 1:
        raise ConfigError("retry.jitter must be between 0 and 1")

    return RetryConfig(
        max_attempts=_positive_int(data.get("max_attempts", 3), "retry.max_attempts"),
        base_delay=_non_negative_float(data.get("base_delay", 1.0), "retry.base_delay"),
        max_delay=_non_negative_float(data.get("max_delay", 30.0), "retry.max_delay"),
        jitter=jitter,
    )


def _as_list(value, name: str) -> list:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{name} must be a list")
    return [str(v) for v in value]


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    return value


def _positive_float(value, name: str) -> float:
    result = _non_negative_float(value, name)
    if result == 0:
        raise ConfigError(f"{name} must be greater than zero")
    return result


def _non_negative_float(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigError(f"{name} must be a non-negative number, got {value!r}")
    return float(value)
