"""Application integration tests.

Cover the scrape endpoint, health probes, and the startup sequence run by the
lifespan (identity resolution, metric registration, probe task).
"""
import time
from unittest import mock

import httpx
import pytest
from fastapi import status
from fastapi.testclient import TestClient
from pydantic import ValidationError

import app.main as main_module
from app.main import app
from app.webmon.core.errors import IdentityResolutionError, MetricRegistrationError

TEST_ORIGIN = "us-east-1a"
TEST_EGRESS_IP = "10.0.0.5"

STATUS_SAMPLE = (
    'monitoring_website_webmon_response_status'
    f'{{from="{TEST_ORIGIN}",outbound_ip="{TEST_EGRESS_IP}"}} 200.0'
)


def wait_for_metrics(client: TestClient, needle: str, timeout: float = 5.0) -> str:
    """Poll /metrics until `needle` shows up, returning the last body."""
    deadline = time.monotonic() + timeout
    body = ""
    while time.monotonic() < deadline:
        body = client.get("/metrics").text
        if needle in body:
            return body
        time.sleep(0.02)
    return body


def test_liveness_probe_returns_200(client: TestClient):
    """Verify liveness probe returns 200 OK when the process is running."""
    response = client.get("/health/live")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "alive"}


def test_readiness_probe_happy_path(client: TestClient):
    """Verify readiness probe returns 200 once the probe task is running."""
    response = client.get("/health/ready")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ready"}


def test_readiness_probe_unhealthy_state(client: TestClient, monkeypatch):
    """Verify readiness probe returns 503 when the monitor is not ready.

    Args:
        client: FastAPI test client fixture.
        monkeypatch: pytest fixture for patching attributes.
    """
    monkeypatch.setattr(app.state, "is_ready", False)
    response = client.get("/health/ready")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert "starting up" in response.json()["detail"]


def test_metrics_endpoint_exposes_probe_series(client: TestClient):
    """Verify a scrape returns the probe samples in the Prometheus text format."""
    body = wait_for_metrics(client, STATUS_SAMPLE)

    assert STATUS_SAMPLE in body
    assert "# TYPE monitoring_website_webmon_load_time_seconds histogram" in body
    assert (
        'monitoring_website_webmon_load_time_seconds_count'
        f'{{from="{TEST_ORIGIN}",outbound_ip="{TEST_EGRESS_IP}"}}'
    ) in body
    # The probed egress IP is expected, so no mismatch sample exists.
    assert 'monitoring_website_webmon_egress_mismatches_total{' not in body


def test_metrics_endpoint_content_type(client: TestClient):
    """Verify the scrape response uses the Prometheus exposition content type."""
    response = client.get("/metrics")
    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"].startswith("text/plain")


def test_metrics_use_app_registry_not_global(client: TestClient):
    """Verify the app exposes its injected registry, not process defaults."""
    body = client.get("/metrics").text
    # The default registry would include process and platform collectors.
    assert "python_info" not in body


def test_lifespan_stores_running_probe_task(client: TestClient):
    """Verify the lifespan leaves a live probe task and registered metrics."""
    assert app.state.metrics.registered
    assert not app.state.probe_task.done()
    assert app.state.probe_loop.target_url == "http://target.test/ip"


def test_lifespan_aborts_when_identity_unresolvable(mock_settings, monkeypatch):
    """Verify identity failure aborts startup with a StartupError."""
    def fail(settings):
        raise IdentityResolutionError("no route")

    monkeypatch.setattr(main_module, "get_settings", lambda: mock_settings)
    monkeypatch.setattr(main_module, "resolve_identity", fail)

    with pytest.raises(IdentityResolutionError):
        with TestClient(app):
            pass


def test_lifespan_aborts_when_registration_fails(mock_settings, monkeypatch):
    """Verify a registration failure aborts startup before probing begins."""
    build_client = mock.Mock()
    monkeypatch.setattr(main_module, "get_settings", lambda: mock_settings)
    monkeypatch.setattr(main_module, "resolve_identity", lambda settings: TEST_ORIGIN)
    monkeypatch.setattr(main_module, "build_probe_client", build_client)
    monkeypatch.setattr(
        main_module.ProbeMetrics,
        "register",
        mock.Mock(side_effect=MetricRegistrationError("x", "duplicate")),
    )

    with pytest.raises(MetricRegistrationError):
        with TestClient(app):
            pass
    build_client.assert_not_called()


def test_failing_target_is_counted_not_fatal(mock_settings, monkeypatch):
    """Verify a target that never answers only increments the error counter."""
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request) from ConnectionRefusedError()

    monkeypatch.setattr(main_module, "get_settings", lambda: mock_settings)
    monkeypatch.setattr(main_module, "resolve_identity", lambda settings: TEST_ORIGIN)
    monkeypatch.setattr(
        main_module,
        "build_probe_client",
        lambda settings: httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
    )

    with TestClient(app) as client:
        body = wait_for_metrics(client, 'error="connection refused"')
        assert 'error="connection refused"' in body
        assert "monitoring_website_webmon_response_status{" not in body
        assert client.get("/health/ready").status_code == status.HTTP_200_OK


def test_run_exits_on_invalid_configuration(monkeypatch):
    """Verify the entry point exits with status 1 when settings are invalid."""
    def invalid():
        raise ValidationError.from_exception_data("Settings", [])

    monkeypatch.setattr(main_module, "get_settings", invalid)
    uvicorn_run = mock.Mock()
    monkeypatch.setattr(main_module.uvicorn, "run", uvicorn_run)

    with pytest.raises(SystemExit) as excinfo:
        main_module.run()

    assert excinfo.value.code == 1
    uvicorn_run.assert_not_called()


def test_run_serves_on_scrape_port(mock_settings, monkeypatch):
    """Verify the entry point starts uvicorn on the configured scrape port."""
    monkeypatch.setattr(main_module, "get_settings", lambda: mock_settings)
    uvicorn_run = mock.Mock()
    monkeypatch.setattr(main_module.uvicorn, "run", uvicorn_run)

    main_module.run()

    _, kwargs = uvicorn_run.call_args
    assert kwargs["port"] == 9100
    assert kwargs["host"] == "0.0.0.0"
