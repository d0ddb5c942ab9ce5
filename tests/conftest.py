"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
- Infrastructure fixtures: metrics reset, recorded sleeps, mutex registry
- Client fixtures: a RestClient pointed at a respx-mocked base URL
- Config fixtures: engine and resource configurations
"""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from restful.api.client import RestClient
from restful.config import ClientConfig, EngineConfig
from restful.lifecycle.resource import ResourceOrchestrator
from restful.observability.metrics import reset_global_collector
from restful.utils import locking
from restful.utils.cancellation import CancelScope

BASE_URL = "https://api.example.com"


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Start every test with an empty metrics collector."""
    reset_global_collector()
    yield
    reset_global_collector()


@pytest.fixture(autouse=True)
def fresh_mutex_registry(monkeypatch):
    """Give every test its own named mutex registry."""
    monkeypatch.setattr(locking, "_MUTEX_REGISTRY", None)


@pytest.fixture
def sleeps(monkeypatch) -> list[float]:
    """Replace CancelScope.sleep with a recorder so tests never wait.

    Zero delays are not recorded. Cancellation is still honoured.

    Example:
        async def test_something(sleeps):
            ...
            assert sleeps == [5.0, 5.0]
    """
    recorded: list[float] = []

    async def fake_sleep(self: CancelScope, seconds: float) -> None:
        self.raise_if_cancelled()
        if seconds > 0:
            recorded.append(seconds)

    monkeypatch.setattr(CancelScope, "sleep", fake_sleep)
    return recorded


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture
def base_url() -> str:
    return BASE_URL


@pytest.fixture
def client_config(base_url: str) -> ClientConfig:
    return ClientConfig(base_url=base_url)


@pytest.fixture
async def client(client_config: ClientConfig) -> AsyncIterator[RestClient]:
    """A RestClient without authentication or retry policy."""
    rest_client = RestClient(client_config)
    yield rest_client
    await rest_client.close()


@pytest.fixture
def orchestrator(client: RestClient) -> ResourceOrchestrator:
    return ResourceOrchestrator(client)


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def engine_config(base_url: str) -> EngineConfig:
    return EngineConfig.from_dict({"client": {"base_url": base_url}})


@pytest.fixture
def engine_config_file(tmp_path: Path, base_url: str) -> Path:
    """An engine configuration YAML file pointing at the mocked API."""
    path = tmp_path / "engine.yaml"
    path.write_text(
        f"client:\n  base_url: {base_url}\nretry:\n  enabled: false\nlogging:\n  level: WARNING\n"
    )
    return path
