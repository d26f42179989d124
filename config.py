# config.py
# Role: Runtime configuration for the finance ledger backend.
#       Reads settings from environment variables (optionally from a .env file)
#       and exposes them as a frozen Settings object.

"""
Configuration for the finance ledger.

Every setting has a development default so the server always boots:
- DATABASE_URL             (default: SQLite file under ./database/)
- SECRET_KEY               (JWT signing secret shared with the identity provider)
- JWT_ALGORITHM            (default: HS256)
- JWT_AUDIENCE             (default: "authenticated")
- ACCESS_TOKEN_EXPIRE_MINUTES
- STORE_TIMEOUT_SECONDS    (upper bound for every store call)
- CORS_ORIGINS             (comma-separated, default "*")
- LOG_LEVEL                (default: INFO)
- SQL_ECHO                 (1/true to log SQL statements)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_truthy(name: str, default: str = "0") -> bool:
    v = os.getenv(name, default)
    return str(v).strip().lower() in ("1", "true", "yes", "y", "on")


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str
    secret_key: str
    jwt_algorithm: str
    jwt_audience: str
    access_token_expire_minutes: int
    store_timeout_seconds: float
    cors_origins: List[str]
    log_level: str
    sql_echo: bool


def load_settings() -> Settings:
    """
    Build Settings from the current environment.

    DATABASE_URL is left empty when unset; db.py substitutes the local
    SQLite default in that case.
    """
    return Settings(
        database_url=(os.getenv("DATABASE_URL") or "").strip(),
        secret_key=os.getenv("SECRET_KEY", "super-secret-key-change-me"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_audience=os.getenv("JWT_AUDIENCE", "authenticated"),
        access_token_expire_minutes=int(_env_float("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)),
        store_timeout_seconds=_env_float("STORE_TIMEOUT_SECONDS", 5.0),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        sql_echo=_env_truthy("SQL_ECHO", "0"),
    )
