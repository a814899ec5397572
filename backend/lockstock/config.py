# backend/lockstock/config.py
from __future__ import annotations
import os


def _csv_env(name: str, default: str) -> set[str]:
    raw = os.environ.get(name, default)
    return {item.strip() for item in raw.split(",") if item.strip()}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file next to the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///lockstock.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Session lifetime for bearer tokens
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_MINUTES = int(os.environ.get("SESSION_IDLE_MINUTES", "120"))

    # Prefix for generated purchase order numbers (PO-20260101-120000)
    PO_NUMBER_PREFIX = os.environ.get("PO_NUMBER_PREFIX", "PO")

    CORS_ALLOWED_ORIGINS = _csv_env(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )

    # bcrypt cost factor; tests lower it to keep hashing fast
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
