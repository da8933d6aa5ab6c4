from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PORT: port the HTTP server binds to. Default 3000
    - HOST: interface the HTTP server binds to. Default '0.0.0.0'
    - PERSISTENCE_BACKEND: 'sqlite' (default) or 'memory'
    - SQLITE_DB_PATH: path to sqlite db file. Default './notes.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - LOG_LEVEL: DEBUG, INFO (default), WARNING, ERROR or CRITICAL
    """

    port: int = 3000
    host: str = "0.0.0.0"
    persistence_backend: str = "sqlite"
    sqlite_db_path: str = "./notes.db"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_port(value: str, default: int) -> int:
    try:
        port = int(value.strip())
    except ValueError:
        return default
    if not (0 < port < 65536):
        return default
    return port


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "sqlite").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to the durable store if unsupported
        backend = "sqlite"

    log_level = _get_env("LOG_LEVEL", "INFO").strip().upper()
    if log_level not in _LOG_LEVELS:
        log_level = "INFO"

    return Settings(
        port=_parse_port(_get_env("PORT", "3000"), 3000),
        host=_get_env("HOST", "0.0.0.0").strip(),
        persistence_backend=backend,
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./notes.db").strip(),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        log_level=log_level,
    )
