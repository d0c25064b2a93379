# backend/retailpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound (seconds) for acquiring a connection or a database lock.
    DB_TIMEOUT_SECONDS = float(os.environ.get("DB_TIMEOUT_SECONDS", "10"))
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "connect_args": {"timeout": DB_TIMEOUT_SECONDS}
        if SQLALCHEMY_DATABASE_URI.startswith("sqlite")
        else {"connect_timeout": int(DB_TIMEOUT_SECONDS)},
    }

    # Lock-contention retries for a whole atomic unit (never business errors)
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # A cashier price override is written back to the catalog price.
    PERSIST_PRICE_OVERRIDES = _env_bool("PERSIST_PRICE_OVERRIDES", True)

    # Global switch for loyalty accrual on registered customers
    LOYALTY_ENABLED = _env_bool("LOYALTY_ENABLED", True)
