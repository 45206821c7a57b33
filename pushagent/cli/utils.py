"""
Shared utilities for CLI commands.

Provides common functionality used across multiple CLI commands to
eliminate duplication and ensure consistent behavior.
"""

import dataclasses
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from pushagent.config.parser import AgentConfig, ConfigError, parse_config

logger = logging.getLogger(__name__)

CONFIG_ENV = "PUSHAGENT_CONFIG"
DEFAULT_CONFIG_PATHS = (
    Path("pushagent.yaml"),
    Path("/etc/pushagent/pushagent.yaml"),
)


# ============================================================================
# Configuration Management
# ============================================================================


def find_config_file(explicit: Optional[Path] = None) -> Path:
    """
    Locate the configuration file.

    Order: ``--config``, ``$PUSHAGENT_CONFIG``, ``./pushagent.yaml``,
    ``/etc/pushagent/pushagent.yaml``.

    Raises:
        ConfigError: If no configuration file is found
    """
    if explicit:
        return Path(explicit)

    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)

    for candidate in DEFAULT_CONFIG_PATHS:
        if candidate.exists():
            return candidate

    raise ConfigError(
        "No configuration file found. Pass --config, set "
        f"{CONFIG_ENV}, or create ./pushagent.yaml"
    )


def load_agent_config(args) -> AgentConfig:
    """
    Load the agent configuration named by the parsed CLI arguments.

    ``--state-dir`` overrides the configured state directory.

    Raises:
        ConfigError: If the configuration is missing or invalid
    """
    config_file = find_config_file(getattr(args, "config", None))
    logger.debug(f"Loading configuration from {config_file}")
    config = parse_config(config_file)

    state_dir = getattr(args, "state_dir", None)
    if state_dir:
        config = dataclasses.replace(config, state_dir=Path(state_dir).expanduser())
    return config


def restrict_targets(config: AgentConfig, names: Optional[List[str]]) -> AgentConfig:
    """
    Limit pushing to the named caches.

    Raises:
        ConfigError: If a name is not a configured cache
    """
    if not names:
        return config
    for name in names:
        if config.get_target(name) is None:
            raise ConfigError(f"Unknown cache: {name}")
    return dataclasses.replace(config, push_to=tuple(names))


# ============================================================================
# Output Formatting
# ============================================================================


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)


def print_warning(message: str):
    """Print warning message to stderr."""
    print(f"WARNING: {message}", file=sys.stderr)


def print_summary(stats) -> None:
    """Print the upload counters of a finished one-shot run."""
    counts = stats.snapshot()
    print(
        f"uploaded: {counts['uploaded']}  failed: {counts['failed']}  "
        f"skipped: {counts['skipped']}  dead-lettered: {counts['dead_lettered']}"
    )
