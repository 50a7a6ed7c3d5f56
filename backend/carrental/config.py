# backend/carrental/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/carrental.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///carrental.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Storage calls never block indefinitely: SQLite busy timeout and pool checkout
    DATABASE_TIMEOUT_SECONDS = _env_float("DATABASE_TIMEOUT_SECONDS", 5.0)

    # Rental engine concurrency
    RENT_LOCK_TIMEOUT_SECONDS = _env_float("RENT_LOCK_TIMEOUT_SECONDS", 10.0)
    STORAGE_RETRY_ATTEMPTS = _env_int("STORAGE_RETRY_ATTEMPTS", 3)
    STORAGE_RETRY_BACKOFF_SECONDS = _env_float("STORAGE_RETRY_BACKOFF_SECONDS", 0.1)

    # Auth
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)
    SESSION_ABSOLUTE_TIMEOUT_HOURS = _env_int("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    SESSION_IDLE_TIMEOUT_HOURS = _env_int("SESSION_IDLE_TIMEOUT_HOURS", 2)

    CORS_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    }


def engine_options(uri: str, timeout: float) -> dict:
    """
    SQLAlchemy engine options with bounded waits.

    SQLite gets a busy timeout so a locked database raises OperationalError
    instead of hanging; server databases get a bounded pool checkout.
    """
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout}}
    return {"pool_pre_ping": True, "pool_timeout": timeout}
