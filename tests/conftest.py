"""Test configuration and shared fixtures.

Provide isolated test settings, an in-memory probe target and a client fixture
whose lifespan never touches the network. Identity resolution is replaced by a
fixed availability zone and the probe client talks to an `httpx.MockTransport`.
"""
from typing import Callable, Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

import app.main as main_module
from app.config import Settings
from app.main import app
from app.webmon.metrics import ProbeMetrics

TEST_ORIGIN = "us-east-1a"
TEST_EGRESS_IP = "10.0.0.5"

# ==============================================================================
# CONFIGURATION FIXTURES
# ==============================================================================

@pytest.fixture(scope="session")
def mock_settings() -> Settings:
    """Provide isolated test configuration without external dependencies.

    Returns:
        Settings: Development settings probing a fake target every 10 ms,
            expecting a single egress IP.
    """
    return Settings(
        ENVIRONMENT="development",
        LOG_LEVEL="debug",
        TARGET_URL="http://target.test/ip",
        POLL_INTERVAL_MS=10,
        EXPECTED_EGRESS_IPS=TEST_EGRESS_IP,
        _env_file=None  # Bypass any local .env file
    )

# ==============================================================================
# METRICS FIXTURES
# ==============================================================================

@pytest.fixture
def registry() -> CollectorRegistry:
    """Provide a fresh registry so series never leak between tests."""
    return CollectorRegistry()


@pytest.fixture
def probe_metrics(registry: CollectorRegistry) -> ProbeMetrics:
    """Provide registered probe metrics with the default naming."""
    metrics = ProbeMetrics(registry, origin=TEST_ORIGIN)
    metrics.register()
    return metrics

# ==============================================================================
# NETWORK FAKES
# ==============================================================================

@pytest.fixture
def egress_handler() -> Callable[[httpx.Request], httpx.Response]:
    """Provide a target that reports TEST_EGRESS_IP as its body."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=TEST_EGRESS_IP)
    return handler


@pytest.fixture(scope="function")
def client(
    mock_settings: Settings,
    egress_handler: Callable[[httpx.Request], httpx.Response],
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[TestClient, None, None]:
    """Provide HTTP test client with the lifespan wired to fakes.

    Args:
        mock_settings: Isolated test configuration.
        egress_handler: Handler answering the probe requests.
        monkeypatch: pytest fixture used to swap the lifespan's collaborators.

    Yields:
        TestClient: Client whose app is probing the fake target.
    """
    monkeypatch.setattr(main_module, "get_settings", lambda: mock_settings)
    monkeypatch.setattr(main_module, "resolve_identity", lambda settings: TEST_ORIGIN)
    monkeypatch.setattr(
        main_module,
        "build_probe_client",
        lambda settings: httpx.AsyncClient(transport=httpx.MockTransport(egress_handler)),
    )

    with TestClient(app) as test_client:
        yield test_client
