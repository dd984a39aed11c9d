"""
WBS Tracker
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'wbs_tracker_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# PostgreSQL pool sizing; SQLite engines take none of these arguments
_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


def _database_url(var="DATABASE_URL"):
    """Read a database URL, rewriting Railway/Heroku's postgres:// scheme for SQLAlchemy 2."""
    raw = os.getenv(var, "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)

    # Flask-Limiter storage: Redis when REDIS_URL is set, process memory otherwise
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_ENABLED = True

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Structural mutations slower than this are logged at WARNING
    WBS_SLOW_MUTATION_MS = int(os.getenv("WBS_SLOW_MUTATION_MS", "500"))


class DevelopmentConfig(Config):
    """Local development: PostgreSQL via DATABASE_URL, else a file-based SQLite."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or _SQLITE_DEV
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS) if _database_url() else {}


class TestingConfig(Config):
    """In-memory SQLite on a single static connection, rate limits off."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL") or _SQLITE_TEST
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"


class ProductionConfig(Config):
    """Production: PostgreSQL with a statement timeout guarding long subtree rewrites."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},  # 30s
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
