"""
Tests for astra/api/health.py - liveness, readiness and the deep check.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from astra.main import app


class TestHealth:
    async def test_liveness(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["version"] == "1.0.0"

    async def test_correlation_id_echoed(self, client):
        resp = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert resp.headers["X-Correlation-ID"] == "abc-123"

    async def test_correlation_id_generated(self, client):
        resp = await client.get("/health")
        assert resp.headers["X-Correlation-ID"]


class TestReadiness:
    async def test_ready(self, client, mock_redis):
        worker = MagicMock()
        worker.worker_id = "worker-abc"
        app.state.notification_worker = worker

        resp = await client.get("/health/ready")

        body = resp.json()
        assert body["status"] == "ready"
        assert body["checks"] == {"database": True, "redis": True}
        assert body["notification_worker"] == "worker-abc"

    async def test_redis_down_is_degraded(self, client, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("refused")
        resp = await client.get("/health/ready")
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["checks"]["redis"] is False
        assert body["notification_worker"] is None

    async def test_database_down_is_unavailable(self, client, db, mock_redis):
        with patch.object(db, "execute", side_effect=RuntimeError("db down")):
            resp = await client.get("/health/ready")
        assert resp.json()["status"] == "unavailable"


class TestDeepHealth:
    def _settings(self, **overrides):
        values = {"notification_worker_enabled": True, "telegram_bot_token": "123:T", "aftership_api_key": "as"}
        values.update(overrides)
        return MagicMock(**values)

    async def test_all_healthy(self, client, mock_redis):
        app.state.notification_worker = MagicMock(worker_id="worker-abc")
        mock_redis.get.return_value = datetime.now(timezone.utc).isoformat()

        with patch("astra.api.health.get_settings", return_value=self._settings()):
            resp = await client.get("/health/deep")

        body = resp.json()
        assert body["status"] == "healthy"
        assert body["checks"]["notification_worker"]["worker_id"] == "worker-abc"
        assert body["checks"]["notification_queue"]["total"] == 0
        mock_redis.get.assert_awaited_once_with("astra:worker_health:notification_dispatch:worker-abc")

    async def test_stale_heartbeat_degrades(self, client, mock_redis):
        app.state.notification_worker = MagicMock(worker_id="worker-abc")
        mock_redis.get.return_value = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat()

        with patch("astra.api.health.get_settings", return_value=self._settings()):
            resp = await client.get("/health/deep")

        body = resp.json()
        assert body["status"] == "degraded"
        assert body["checks"]["notification_worker"]["healthy"] is False

    async def test_loop_disabled_needs_no_heartbeat(self, client, mock_redis):
        app.state.notification_worker = MagicMock(worker_id="worker-abc")
        settings = self._settings(notification_worker_enabled=False)

        with patch("astra.api.health.get_settings", return_value=settings):
            resp = await client.get("/health/deep")

        assert resp.json()["checks"]["notification_worker"]["loop"] == "disabled"
        mock_redis.get.assert_not_awaited()

    async def test_missing_provider_keys_degrade(self, client, mock_redis):
        app.state.notification_worker = MagicMock(worker_id="worker-abc")
        mock_redis.get.return_value = datetime.now(timezone.utc).isoformat()
        settings = self._settings(aftership_api_key="")

        with patch("astra.api.health.get_settings", return_value=settings):
            resp = await client.get("/health/deep")

        body = resp.json()
        assert body["status"] == "degraded"
        assert body["checks"]["aftership"] == {"healthy": False}

    async def test_database_down_is_unhealthy(self, client, db, mock_redis):
        with patch.object(db, "execute", side_effect=RuntimeError("db down")):
            resp = await client.get("/health/deep")
        assert resp.json()["status"] == "unhealthy"
