"""Project configuration.

Loads environment variables from a `.env` file located in the project root
and exposes a `Config` class with typed attributes and helpers.

Features:
- Supports DATABASE_URL override (useful for deployed environments).
- Builds a PostgreSQL URL from components and URL-encodes credentials.
- Safe parsing for integers, floats and lists (DB_PORT, ADMINS, TTLs).
- Explicit `.env` path loading to avoid surprises when running from other CWDs.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List
from urllib.parse import quote_plus

from dotenv import load_dotenv


# load .env from project root (file next to this script)
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, "") or default)
    except (TypeError, ValueError):
        return default


def _list_env(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [part.strip() for part in raw.split(",") if part.strip()]


class Config:
    # Runtime
    NODE_ENV: str = os.getenv("NODE_ENV", os.getenv("ENV", "development")).lower()
    PORT: int = _int_env("PORT", 5000)
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:5000").rstrip("/")
    FRONTEND_ORIGINS: List[str] = _list_env("FRONTEND_ORIGIN") or ["http://localhost:5173"]
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")

    # Full database URL override (e.g., from hosting providers)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "") or os.getenv("POSTGRES_URL", "")

    # Database components (used if DATABASE_URL is not set)
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = _int_env("DB_PORT", 5432)
    DB_USER: str = os.getenv("DB_USER", os.getenv("DB_USERNAME", "globetrotter"))
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", os.getenv("DB_PASS", ""))
    DB_NAME: str = os.getenv("DB_NAME", os.getenv("DB_DATABASE", "globetrotter"))
    # optional DB_CONNECTION like 'pgsql' in some .env files; map to SQLAlchemy scheme
    DB_CONNECTION: str = os.getenv("DB_CONNECTION", "")
    DB_POOL_SIZE: int = _int_env("DB_POOL_SIZE", 20)
    DB_RETRY_ATTEMPTS: int = _int_env("DB_RETRY_ATTEMPTS", 3)
    DB_RETRY_BASE_DELAY: float = _float_env("DB_RETRY_BASE_DELAY", 0.05)

    # Auth
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    TOKEN_TTL_SECONDS: int = _int_env("TOKEN_TTL_SECONDS", 24 * 60 * 60)
    PASSWORD_HASH_ROUNDS: int = _int_env("PASSWORD_HASH_ROUNDS", 16)
    # ADMINS: comma-separated emails that get the admin role on signup
    ADMINS: List[str] = [email.lower() for email in _list_env("ADMINS")]

    # Media
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads"))
    MAX_UPLOAD_BYTES: int = _int_env("MAX_UPLOAD_BYTES", 5 * 1024 * 1024)

    # Handler wall-clock budgets
    REQUEST_TIMEOUT_SECONDS: float = _float_env("REQUEST_TIMEOUT_SECONDS", 10.0)
    UPLOAD_TIMEOUT_SECONDS: float = _float_env("UPLOAD_TIMEOUT_SECONDS", 30.0)

    # how long a stored X-Client-Request-Id response stays replayable
    CLIENT_REQUEST_TTL_SECONDS: int = _int_env("CLIENT_REQUEST_TTL_SECONDS", 24 * 60 * 60)

    _DEV_SECRET = "dev-secret-change-me"

    @staticmethod
    def is_production() -> bool:
        return Config.NODE_ENV == "production"

    @staticmethod
    def get_secret_key() -> str:
        """Return the token signing key, falling back to a dev key outside production."""
        return Config.SECRET_KEY or Config._DEV_SECRET

    @staticmethod
    def get_database_url() -> str:
        """Return a full database URL.

        Priority:
        1. `DATABASE_URL` env var (if present)
        2. Build a postgresql:// URL from DB_* components

        Username/password/db name are URL-encoded for safety.
        """
        if Config.DATABASE_URL:
            url = Config.DATABASE_URL.strip()
            # Strip surrounding quotes if present
            if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
                url = url[1:-1]
            # Normalize common provider URLs for SQLAlchemy
            if url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql://", 1)
            return url

        user = quote_plus(str(Config.DB_USER))
        password = quote_plus(str(Config.DB_PASSWORD))
        host = Config.DB_HOST
        port = Config.DB_PORT
        dbname = quote_plus(str(Config.DB_NAME))

        # Determine scheme: allow DB_CONNECTION aliases (e.g., 'pgsql')
        scheme = "postgresql"
        if Config.DB_CONNECTION:
            conn = Config.DB_CONNECTION.lower()
            if conn in ("pgsql", "postgres", "postgresql"):
                scheme = "postgresql"
            elif conn in ("mysql", "mysql2"):
                scheme = "mysql+pymysql"
            elif conn.startswith("sqlite"):
                scheme = "sqlite"

        if scheme == "sqlite":
            # For sqlite, DB_NAME is a file path; if empty use in-memory
            if not Config.DB_NAME or Config.DB_NAME in (":memory:", "memory"):
                return "sqlite:///:memory:"
            return f"sqlite:///{Config.DB_NAME}"

        return f"{scheme}://{user}:{password}@{host}:{port}/{dbname}"

    @staticmethod
    def validate() -> List[str]:
        """Validate critical configuration and return list of errors/warnings.

        Returns:
            List of error/warning messages. Empty list means all is good.
            Messages starting with "CRITICAL" abort startup.
        """
        errors = []

        if not Config.SECRET_KEY:
            if Config.is_production():
                errors.append("CRITICAL: SECRET_KEY is not set")
            else:
                errors.append("WARNING: SECRET_KEY is not set, using a development key")
        if not Config.ADMINS:
            errors.append("WARNING: No ADMINS configured (admin accounts must be promoted manually)")
        if Config.TOKEN_TTL_SECONDS <= 0:
            errors.append("CRITICAL: TOKEN_TTL_SECONDS must be positive")
        if Config.MAX_UPLOAD_BYTES <= 0:
            errors.append("CRITICAL: MAX_UPLOAD_BYTES must be positive")

        try:
            from zoneinfo import ZoneInfo
            ZoneInfo(Config.TIMEZONE)
        except Exception:
            errors.append(f"CRITICAL: TIMEZONE {Config.TIMEZONE!r} is not a known timezone")

        try:
            db_url = Config.get_database_url()
            if not db_url or db_url == "sqlite:///:memory:":
                errors.append("WARNING: Using in-memory database (data will be lost on restart)")
        except Exception as e:
            errors.append(f"CRITICAL: Failed to build database URL: {e}")

        return errors

    @staticmethod
    def critical_errors() -> List[str]:
        return [e for e in Config.validate() if e.startswith("CRITICAL")]
