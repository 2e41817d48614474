"""
Tests — configuration classes, logging formatters and rate-limit wiring.
"""

import json
import logging

import pytest
from flask import Flask

from reqgraph.config import (
    Config,
    DevelopmentConfig,
    ProductionConfig,
    TestingConfig,
    _database_url,
    config,
)
from reqgraph.middleware.logging_config import JSONFormatter, ReadableFormatter, configure_logging


def _record(msg="hello %s", args=("world",), level=logging.INFO, **extra):
    record = logging.LogRecord("reqgraph.test", level, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ═════════════════════════════════════════════════════════════════════════════
# 1. Config
# ═════════════════════════════════════════════════════════════════════════════


class TestConfig:
    def test_mapping(self):
        assert config["default"] is DevelopmentConfig
        assert config["testing"] is TestingConfig

    def test_relationship_defaults(self):
        assert Config.RELATIONSHIP_MAX_DEPTH == 20
        assert Config.DRAG_ACTIVATION_DISTANCE == 8

    def test_testing_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["RATELIMIT_ENABLED"] is False
        assert app.config["RELATIONSHIP_MAX_DEPTH"] == 20

    def test_postgres_scheme_rewritten(self, monkeypatch):
        monkeypatch.setenv("REQGRAPH_TEST_DB", "postgres://u:p@host/db")
        assert _database_url("REQGRAPH_TEST_DB") == "postgresql://u:p@host/db"
        monkeypatch.delenv("REQGRAPH_TEST_DB")
        assert _database_url("REQGRAPH_TEST_DB") == ""

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            ProductionConfig()

    def test_production_requires_secret_key(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://h/db")
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.raises(RuntimeError, match="SECRET_KEY"):
            ProductionConfig()


# ═════════════════════════════════════════════════════════════════════════════
# 2. Logging
# ═════════════════════════════════════════════════════════════════════════════


class TestLogging:
    def test_json_formatter(self):
        line = JSONFormatter().format(_record(project_id=3, request_id="r1"))
        payload = json.loads(line)
        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["project_id"] == 3
        assert payload["request_id"] == "r1"
        assert "ancestor_id" not in payload

    def test_readable_formatter(self):
        line = ReadableFormatter().format(_record(level=logging.WARNING, duration_ms=12.4))
        assert "WARNING" in line
        assert "hello world" in line
        assert "[12ms]" in line

    def test_configure_logging_picks_formatter_and_level(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            prod = Flask("prod")
            prod.config.update(DEBUG=False, TESTING=False, LOG_LEVEL="WARNING")
            configure_logging(prod)
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING

            dev = Flask("dev")
            dev.config.update(DEBUG=True, TESTING=False, LOG_LEVEL=None)
            configure_logging(dev)
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, ReadableFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_rate_limiter_skipped_when_testing(self, app):
        from reqgraph import limiter
        from reqgraph.middleware.rate_limiter import init_rate_limits

        # Returns before touching the limiter
        assert init_rate_limits(app, limiter) is None
