"""
Tests for astra/utils - side effect runner, structured logging, config.
"""
import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

from astra.config import Settings
from astra.database import _engine_options
from astra.utils.logging import (
    StructuredJsonFormatter,
    bind_log_fields,
    bound_log_context,
    get_correlation_id,
    set_correlation_id,
)
from astra.utils.side_effects import SideEffect, run_side_effects


class TestRunSideEffects:
    async def test_failures_isolated(self):
        first = AsyncMock()
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        last = AsyncMock()

        failed = await run_side_effects([
            SideEffect("first", first),
            SideEffect("broken", broken),
            SideEffect("last", last),
        ], tenant_id="t1")

        assert failed == ["broken"]
        first.assert_awaited_once()
        last.assert_awaited_once()

    async def test_empty(self):
        assert await run_side_effects([]) == []


class TestStructuredJsonFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("astra.test", logging.WARNING, __file__, 1, "hello %s", ("world",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_with_extra_fields(self):
        set_correlation_id("cid-1")
        entry = json.loads(StructuredJsonFormatter().format(self._record(tenant_id="t1", job_id="j1")))
        assert entry["message"] == "hello world"
        assert entry["level"] == "WARNING"
        assert entry["tenant_id"] == "t1"
        assert entry["job_id"] == "j1"
        assert entry["correlation_id"] == get_correlation_id() == "cid-1"

    def test_unset_extras_omitted(self):
        entry = json.loads(StructuredJsonFormatter().format(self._record()))
        assert "courier" not in entry

    def test_bound_context_fields(self):
        with bound_log_context(request_id="req_1", tenant_id=None):
            bind_log_fields(tenant_id="t9")
            entry = json.loads(StructuredJsonFormatter().format(self._record()))
        assert entry["request_id"] == "req_1"
        assert entry["tenant_id"] == "t9"

        after = json.loads(StructuredJsonFormatter().format(self._record()))
        assert "request_id" not in after

    def test_nested_context_restored(self):
        with bound_log_context(request_id="outer"):
            with bound_log_context(courier="gls"):
                inner = json.loads(StructuredJsonFormatter().format(self._record()))
            outer = json.loads(StructuredJsonFormatter().format(self._record()))
        assert inner["request_id"] == "outer"
        assert inner["courier"] == "gls"
        assert "courier" not in outer

    def test_bind_without_context_is_noop(self):
        bind_log_fields(tenant_id="t1")
        entry = json.loads(StructuredJsonFormatter().format(self._record()))
        assert "tenant_id" not in entry

    def test_sensitive_details_redacted(self):
        record = self._record(details={"x-webhook-secret": "wh_" + "a" * 40, "step": "validated"})
        entry = json.loads(StructuredJsonFormatter().format(record))
        assert entry["details"]["x-webhook-secret"] == "wh_aaaaa... (length: 43)"
        assert entry["details"]["step"] == "validated"


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("APP_SECRET_KEY", "k")
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://localhost/astra")
        monkeypatch.delenv("NOTIFICATION_WORKER_ENABLED", raising=False)
        settings = Settings(_env_file=None)
        assert settings.notification_max_attempts == 3
        assert settings.notification_processing_timeout_seconds == 300
        assert settings.telegram_api_base == "https://api.telegram.org"
        assert settings.notification_worker_enabled is True

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("APP_SECRET_KEY", "k")
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://localhost/astra")
        monkeypatch.setenv("NOTIFICATION_BATCH_SIZE", "25")
        assert Settings(_env_file=None).notification_batch_size == 25

    def test_bounds_rejected(self, monkeypatch):
        monkeypatch.setenv("APP_SECRET_KEY", "k")
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://localhost/astra")
        monkeypatch.setenv("NOTIFICATION_BATCH_SIZE", "0")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_normalization_and_jwt_fallback(self, monkeypatch):
        monkeypatch.setenv("APP_SECRET_KEY", "k")
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://localhost/astra")
        monkeypatch.setenv("TELEGRAM_API_BASE", "https://tg.example/")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.delenv("DASHBOARD_JWT_SECRET", raising=False)
        settings = Settings(_env_file=None)
        assert settings.telegram_api_base == "https://tg.example"
        assert settings.log_level == "DEBUG"
        assert settings.jwt_secret == "k"


class TestEngineOptions:
    def _settings(self):
        return MagicMock(app_env="test", database_pool_size=7, database_max_overflow=3)

    def test_postgres_gets_pool_sizing(self):
        with patch("astra.config.get_settings", return_value=self._settings()):
            options = _engine_options("postgresql+asyncpg://u:p@localhost/astra")
        assert options["pool_size"] == 7
        assert options["max_overflow"] == 3
        assert options["pool_pre_ping"] is True

    def test_sqlite_skips_pool_sizing(self):
        with patch("astra.config.get_settings", return_value=self._settings()):
            options = _engine_options("sqlite+aiosqlite:///:memory:")
        assert "pool_size" not in options
        assert options["echo"] is False
