"""
Environment-backed settings.

Every helper falls back to its default when the variable is unset, blank,
or not parseable, so a typo in the environment never takes the API down.
"""

from __future__ import annotations

import os


def env_str(name: str, default: str) -> str:
    return os.environ.get(name, default).strip() or default


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    return raw not in {"0", "false", "False", "no", "off"}


def elasticsearch_url() -> str:
    return env_str("ELASTICSEARCH_URL", "http://elasticsearch:9200")


def elasticsearch_index() -> str:
    return env_str("ELASTICSEARCH_INDEX", "transactions")


def elasticsearch_timeout_s() -> float:
    value = env_float("ELASTICSEARCH_TIMEOUT_S", 30.0)
    return value if value > 0 else 30.0


def elasticsearch_credentials() -> tuple[str, str] | None:
    """
    Basic-auth credentials for the engine, or None when not configured.
    """
    username = os.environ.get("ELASTICSEARCH_USERNAME", "").strip()
    if not username:
        return None
    return username, os.environ.get("ELASTICSEARCH_PASSWORD", "")


def create_index_on_startup() -> bool:
    return env_bool("ELASTICSEARCH_CREATE_INDEX", False)


def search_cache_ttl_s() -> int:
    value = env_int("SEARCH_CACHE_TTL_S", 24 * 60 * 60)
    return max(value, 0)


def search_cache_max_entries() -> int:
    value = env_int("SEARCH_CACHE_MAX_ENTRIES", 1024)
    return value if value > 0 else 1024


def cors_allow_origins() -> list[str]:
    raw = env_str("CORS_ALLOW_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def log_level() -> str:
    return env_str("LOG_LEVEL", "INFO").upper()
