"""Configuration module for pushagent.

This module provides YAML configuration parsing and validation for pushagent.yaml.
"""

from pushagent.config.parser import (
    AgentConfig,
    CacheTarget,
    QueueConfig,
    RetryConfig,
    ConfigError,
    parse_config,
    parse_config_data,
)

__all__ = [
    "AgentConfig",
    "CacheTarget",
    "QueueConfig",
    "RetryConfig",
    "ConfigError",
    "parse_config",
    "parse_config_data",
]
