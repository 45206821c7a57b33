"""Test fixtures for pushagent tests.

This package provides reusable helpers for testing pushagent components:

- agent: a scriptable in-memory CacheClient and configuration builders

Import helpers in your tests using:
    from tests.fixtures.agent import FakeCacheClient, make_config
"""

__all__ = [
    "agent",
]
