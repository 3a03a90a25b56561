"""
Tests for astra/main.py - FastAPI app creation, middleware, error rendering
and lifespan.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from astra.errors import ConflictError, WebhookValidationError
from astra.main import astra_error_handler, create_app, lifespan, scrub_sentry_event


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_settings(**overrides):
    """Build a mock Settings object."""
    defaults = {
        "app_env": "test",
        "app_base_url": "http://localhost:8000",
        "log_level": "WARNING",
        "allowed_origins": "",
        "dashboard_jwt_secret": "test_jwt_secret",
        "sentry_dsn": "",
        "telegram_bot_token": "123:TEST",
        "aftership_api_key": "as_test",
        "notification_worker_enabled": False,
        "notification_poll_interval_seconds": 30,
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


def _create_app(**overrides) -> FastAPI:
    with (
        patch("astra.main.get_settings", return_value=_make_mock_settings(**overrides)),
        patch("astra.main.configure_structured_logging"),
    ):
        return create_app()


# ---------------------------------------------------------------------------
# create_app - application factory
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        assert isinstance(_create_app(), FastAPI)

    def test_app_metadata(self):
        app = _create_app()
        assert app.title == "Astra CRM"
        assert app.version == "1.0.0"

    def test_configures_structured_logging(self):
        with (
            patch("astra.main.get_settings", return_value=_make_mock_settings(log_level="DEBUG")),
            patch("astra.main.configure_structured_logging") as mock_log,
        ):
            create_app()
        mock_log.assert_called_once_with("DEBUG")

    @pytest.mark.parametrize(("name", "params", "path"), [
        ("health_check", {}, "/health"),
        ("readiness_check", {}, "/health/ready"),
        ("deep_health_check", {}, "/health/deep"),
        ("lead_webhook", {}, "/api/webhook/lead"),
        ("customer_webhook", {}, "/api/webhook/customer"),
        ("shopify_order_webhook", {}, "/api/webhook/orders/shopify"),
        ("woocommerce_order_webhook", {}, "/api/webhook/orders/woocommerce"),
        ("post_lead", {}, "/api/v1/leads"),
        ("patch_lead", {"lead_id": "l1"}, "/api/v1/leads/l1"),
        ("set_tracking_number", {"order_id": "o1"}, "/api/v1/orders/o1/tracking"),
        ("tracking_status", {"order_id": "o1"}, "/api/v1/orders/o1/tracking-status"),
        ("regenerate_tenant_secret", {}, "/api/v1/tenant/webhook-secret"),
        ("regenerate_integration_secret", {"integration_id": "i1"}, "/api/v1/integrations/i1/webhook-secret"),
        ("run_sweep", {}, "/api/v1/notifications/sweep"),
        ("get_stats", {}, "/api/v1/notifications/stats"),
        ("get_logs", {}, "/api/v1/webhook-debug/logs"),
        ("clear_logs", {}, "/api/v1/webhook-debug/logs"),
    ])
    def test_routes_registered(self, name, params, path):
        assert _create_app().url_path_for(name, **params) == path


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class TestMiddleware:
    def test_generates_correlation_id_when_missing(self):
        client = TestClient(_create_app(), raise_server_exceptions=False)
        response = client.get("/health")
        assert len(response.headers["x-correlation-id"]) == 32

    def test_cors_allows_configured_origin(self):
        client = TestClient(_create_app(allowed_origins="https://crm.example.com, "), raise_server_exceptions=False)
        response = client.options(
            "/health",
            headers={"Origin": "https://crm.example.com", "Access-Control-Request-Method": "GET"},
        )
        assert response.headers["access-control-allow-origin"] == "https://crm.example.com"


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------


class TestErrorHandler:
    async def test_renders_astra_error(self):
        response = await astra_error_handler(MagicMock(), ConflictError("Customer already exists", details={"id": "c1"}))
        assert response.status_code == 409
        assert response.body == b'{"error":"conflict","message":"Customer already exists","details":{"id":"c1"}}'

    async def test_renders_validation_fields(self):
        exc = WebhookValidationError("Validation failed: source", fields=[{"field": "source", "message": "Field is required"}])
        response = await astra_error_handler(MagicMock(), exc)
        assert response.status_code == 400
        assert b'"fields":[{"field":"source"' in response.body


# ---------------------------------------------------------------------------
# lifespan - startup and shutdown
# ---------------------------------------------------------------------------


class TestLifespan:
    async def test_worker_built_without_loop(self):
        app = MagicMock()
        worker = MagicMock(worker_id="worker-test")
        with (
            patch("astra.main.get_settings", return_value=_make_mock_settings()),
            patch("astra.database.get_session_factory", return_value=MagicMock()),
            patch("astra.services.notification_queue.build_notification_worker", return_value=worker),
            patch("astra.workers.notification_dispatch.run_notification_worker", new_callable=AsyncMock) as run,
        ):
            async with lifespan(app):
                assert app.state.notification_worker is worker
        run.assert_not_called()

    async def test_worker_loop_started_and_cancelled(self):
        app = MagicMock()
        worker = MagicMock(worker_id="worker-test")
        started = asyncio.Event()

        async def _loop(w, poll_interval):
            started.set()
            await asyncio.sleep(3600)

        with (
            patch("astra.main.get_settings", return_value=_make_mock_settings(notification_worker_enabled=True)),
            patch("astra.database.get_session_factory", return_value=MagicMock()),
            patch("astra.services.notification_queue.build_notification_worker", return_value=worker),
            patch("astra.workers.notification_dispatch.run_notification_worker", side_effect=_loop),
        ):
            async with lifespan(app):
                await asyncio.wait_for(started.wait(), timeout=1)

    async def test_sentry_initialized(self):
        with (
            patch("astra.main.get_settings", return_value=_make_mock_settings(sentry_dsn="https://key@sentry.test/1")),
            patch("astra.database.get_session_factory", return_value=MagicMock()),
            patch("astra.services.notification_queue.build_notification_worker", return_value=MagicMock()),
            patch("sentry_sdk.init") as sentry_init,
        ):
            async with lifespan(MagicMock()):
                pass
        sentry_init.assert_called_once()
        assert sentry_init.call_args.kwargs["environment"] == "test"
        assert sentry_init.call_args.kwargs["before_send"] is scrub_sentry_event

    def test_sentry_events_scrubbed(self):
        event = {"request": {
            "headers": {"X-Webhook-Secret": "wh_" + "a" * 40, "Content-Type": "application/json"},
            "data": {"webhook_secret": "wh_" + "b" * 40, "source": "website"},
        }}
        scrubbed = scrub_sentry_event(event, {})
        assert scrubbed["request"]["headers"]["X-Webhook-Secret"] == "wh_aaaaa... (length: 43)"
        assert scrubbed["request"]["headers"]["Content-Type"] == "application/json"
        assert scrubbed["request"]["data"]["source"] == "website"
        assert scrubbed["request"]["data"]["webhook_secret"].startswith("wh_bbbbb...")


@pytest.mark.parametrize("path", ["/health", "/health/ready", "/health/deep"])
def test_health_routes_use_get(path):
    client = TestClient(_create_app(), raise_server_exceptions=False)
    response = client.post(path)
    assert response.status_code == 405
    assert "GET" in response.headers["allow"]
