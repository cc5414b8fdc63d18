# backend/webill/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/webill.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///webill.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Reports abort with a timeout error past this many seconds
    REPORT_TIMEOUT_SECONDS = _int_env("REPORT_TIMEOUT_SECONDS", 30)

    # Ledger mutations retry lock/version conflicts this many times
    MUTATION_RETRY_ATTEMPTS = _int_env("MUTATION_RETRY_ATTEMPTS", 3)

    DEFAULT_PAYMENT_TERMS_DAYS = _int_env("DEFAULT_PAYMENT_TERMS_DAYS", 30)

    # Used to sign reminder messages ("<COMPANY_NAME> Team")
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "WeBill")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if origin.strip()
    ]
