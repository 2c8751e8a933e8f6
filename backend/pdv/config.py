# backend/pdv/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> float | None:
    value = os.environ.get(name)
    if not value:
        return None
    return float(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pdv.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pdv.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Off by default: the register historically sold past zero stock.
    PDV_ENFORCE_STOCK = _env_bool("PDV_ENFORCE_STOCK", False)

    PDV_CURRENCY_SYMBOL = os.environ.get("PDV_CURRENCY_SYMBOL", "R$")

    # Attempts for stock deltas and sequence allocation on lock/stale errors
    PDV_RETRY_ATTEMPTS = int(os.environ.get("PDV_RETRY_ATTEMPTS", "3"))

    # Per-request deadline for commit/cancel routes (None = no deadline)
    PDV_COMMIT_TIMEOUT_SECONDS = _env_float("PDV_COMMIT_TIMEOUT_SECONDS")
