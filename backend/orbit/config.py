# backend/orbit/config.py
from __future__ import annotations
import os
from datetime import timedelta


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orbit.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orbit.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Object storage for bills and payment proofs: <root>/<user_id>/<expense_id>/<key>
    STORAGE_ROOT = os.environ.get("STORAGE_ROOT", "expense-files")
    MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
    ALLOWED_UPLOAD_TYPES = _csv(
        os.environ.get(
            "ALLOWED_UPLOAD_TYPES",
            "image/png,image/jpeg,image/gif,image/webp,application/pdf",
        )
    )
    # Flask rejects request bodies above this (several files per submission)
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_CONTENT_LENGTH", str(50 * 1024 * 1024)))

    # Highest priority first. Decides the primary role of multi-role users.
    ROLE_PRIORITY = _csv(os.environ.get("ORBIT_ROLE_PRIORITY", "owner,accounts,manager,employee"))

    SESSION_ABSOLUTE_TIMEOUT = timedelta(
        hours=int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))
    )
    SESSION_IDLE_TIMEOUT = timedelta(
        hours=int(os.environ.get("SESSION_IDLE_TIMEOUT_HOURS", "2"))
    )

    CORS_ALLOWED_ORIGINS = _csv(
        os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:8080,http://127.0.0.1:8080",
        )
    )


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
    BCRYPT_ROUNDS = 4
