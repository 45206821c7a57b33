"""
Pytest configuration and shared fixtures for pushagent tests.
"""

import pytest
from pathlib import Path

from pushagent.agent import DeadLetterLog, PushAgent, RecordingEventSink
from pushagent.caching.credentials import StaticCredentialProvider
from pushagent.core.locking import LockManager
from pushagent.core.platform import clear_host_cache

from tests.fixtures.agent import FakeCacheClient, make_config


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests that require network access",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --integration flag is provided."""
    if not config.getoption("--integration"):
        skip_integration = pytest.mark.skip(reason="need --integration option to run")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (requires --integration)",
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_host_cache():
    """Host identity is cached per process; tests patch it."""
    clear_host_cache()
    yield
    clear_host_cache()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Agent state directory."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def lock_manager(state_dir: Path) -> LockManager:
    return LockManager(state_dir)


@pytest.fixture
def dead_letters(state_dir: Path, lock_manager: LockManager) -> DeadLetterLog:
    return DeadLetterLog(state_dir / "dead-letter.jsonl", lock_manager)


@pytest.fixture
def fake_client() -> FakeCacheClient:
    return FakeCacheClient()


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider({"main": "secret-token", "backup": "backup-token"})


@pytest.fixture
def recorder() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def make_agent(state_dir, fake_client, credentials, dead_letters, recorder):
    """Factory for agents on a non-server host; shuts them all down afterwards."""
    agents = []

    def factory(host="worker1", client=None, creds=None, **config_overrides):
        config = make_config(state_dir, **config_overrides)
        agent = PushAgent(
            config=config,
            client=client or fake_client,
            credentials=creds or credentials,
            dead_letters=dead_letters,
            sink=recorder,
            host_identity=host,
        )
        agents.append(agent)
        return agent

    yield factory

    for agent in agents:
        agent.shutdown(grace=1.0)


@pytest.fixture
def config_file(tmp_path: Path, state_dir: Path) -> Path:
    """A pushagent.yaml pointing at a mocked cache."""
    content = f"""version: 1
caches:
  - name: main
    endpoint: https://cache.test
    token_env: PUSHAGENT_TEST_TOKEN
workers: 2
timeout: 5
queue:
  capacity: 16
  block_timeout: 0.1
retry:
  max_attempts: 2
  base_delay: 0
  max_delay: 0
  jitter: 0
excluded_hosts: [cache1]
state_dir: {state_dir}
shutdown_grace: 2
diagnose_failures: false
"""
    path = tmp_path / "pushagent.yaml"
    path.write_text(content)
    return path
