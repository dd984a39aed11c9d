"""Tests for environment configuration and the extensions it drives."""

import pytest

from wbs_tracker.config import Config, ProductionConfig, TestingConfig, config


def test_config_map_covers_every_environment():
    assert set(config) == {"development", "testing", "production", "default"}
    assert config["testing"] is TestingConfig


def test_limiter_storage_comes_from_config(app):
    assert app.config["RATELIMIT_STORAGE_URI"] == "memory://"
    assert app.config["RATELIMIT_ENABLED"] is False


def test_testing_uses_sqlite_without_pool_options(app):
    assert app.config["SQLALCHEMY_ENGINE_OPTIONS"] == {}
    assert app.config["WBS_SLOW_MUTATION_MS"] == Config.WBS_SLOW_MUTATION_MS


def test_production_keeps_pool_options_and_adds_timeout():
    options = ProductionConfig.SQLALCHEMY_ENGINE_OPTIONS
    assert options["pool_pre_ping"] is True
    assert options["pool_size"] == Config.SQLALCHEMY_ENGINE_OPTIONS["pool_size"]
    assert "statement_timeout=30000" in options["connect_args"]["options"]


def test_production_requires_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        ProductionConfig()
