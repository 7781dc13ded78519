"""
Configuration objects for ``create_app``.

Selected by name (APP_ENV, default "development"); every value that varies
per deployment is read from the environment at import time.

    development  local SQLite file, auth off unless API_AUTH_ENABLED says otherwise
    testing      in-memory SQLite, auth and rate limits off, local generation stub
    production   DATABASE_URL and SECRET_KEY mandatory
"""

import os
import secrets

PACKAGE_ROOT = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
DEV_DATABASE = "sqlite:///" + os.path.join(PACKAGE_ROOT, "instance", "certflow.db")


def _database_url(default=None):
    # SQLAlchemy 2.x only accepts the postgresql:// scheme
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    if raw.startswith("postgres://"):
        return "postgresql://" + raw[len("postgres://"):]
    return raw


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _env_float(name, default):
    return float(os.getenv(name, str(default)))


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # "false" disables X-API-Key checks; keys themselves live in API_KEYS
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")

    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    # shared bucket for run / approve / apply-all / RPC
    GENERATION_RATE_LIMIT = os.getenv("GENERATION_RATE_LIMIT", "30/minute")

    # Generation gateway
    LLM_DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "gpt-4o-mini")
    LLM_TIMEOUT_SECONDS = _env_float("LLM_TIMEOUT_SECONDS", 120)
    LLM_MAX_ATTEMPTS = _env_int("LLM_MAX_ATTEMPTS", 2)
    LLM_RETRY_BASE_SECONDS = _env_float("LLM_RETRY_BASE_SECONDS", 1.0)
    PROMPTS_DIR = os.getenv("PROMPTS_DIR")

    DOCUMENT_MAX_CHARS = _env_int("DOCUMENT_MAX_CHARS", 500_000)
    MAX_CONTENT_LENGTH = 8 * 1024 * 1024


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
    SQLALCHEMY_DATABASE_URI = _database_url(DEV_DATABASE)
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False
    LLM_DEFAULT_CHAT_MODEL = "local-stub"
    LLM_RETRY_BASE_SECONDS = 0.0


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    # explicit allow-list only
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": _env_int("DB_POOL_SIZE", 5),
        "max_overflow": _env_int("DB_MAX_OVERFLOW", 10),
        "pool_timeout": 20,
    }

    def __init__(self):
        missing = [name for name, value in (("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                                            ("SECRET_KEY", os.getenv("SECRET_KEY"))) if not value]
        if missing:
            raise RuntimeError(f"Production config requires: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
