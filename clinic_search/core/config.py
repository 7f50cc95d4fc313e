"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    catalog_path: str = ""
    redis_url: str = ""
    redis_socket_timeout: float = 2.0
    fulltext_index_url: str = ""
    fulltext_index_name: str = "rehab_clinics"
    fulltext_index_timeout: float = 3.0
    catalog_ttl_seconds: int = 300
    catalog_refresh_interval_seconds: int = 300
    search_cache_ttl_seconds: int = 180
    suggestions_cache_ttl_seconds: int = 300
    strategy_timeout_seconds: float = 5.0
    search_max_workers: int = 8
    rate_limit_window_ms: int = 60_000
    rate_limit_general: int = 100
    rate_limit_search: int = 30
    rate_limit_user_data: int = 60
    rate_limit_admin: int = 10
    rate_limit_clinic: int = 50
    rate_limit_recovery_seconds: int = 30
    identity_header: str = "X-User-Id"
    port: int = 8080


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    catalog_path = os.getenv("CATALOG_PATH", "")
    redis_url = os.getenv("REDIS_URL", "")
    fulltext_index_url = os.getenv("FULLTEXT_INDEX_URL", "").rstrip("/")

    if not database_url and not catalog_path:
        logger.warning("Neither DATABASE_URL nor CATALOG_PATH is set; the clinic catalog cannot load.")
    if not redis_url:
        logger.warning("REDIS_URL is not configured; caching and rate limiting stay in-process.")
    if not fulltext_index_url:
        logger.info("FULLTEXT_INDEX_URL is not configured; text search scans the catalog.")

    return Settings(
        database_url=database_url,
        catalog_path=catalog_path,
        redis_url=redis_url,
        redis_socket_timeout=_env_float("REDIS_SOCKET_TIMEOUT", 2.0),
        fulltext_index_url=fulltext_index_url,
        fulltext_index_name=os.getenv("FULLTEXT_INDEX_NAME", "rehab_clinics"),
        fulltext_index_timeout=_env_float("FULLTEXT_INDEX_TIMEOUT", 3.0),
        catalog_ttl_seconds=_env_int("CATALOG_TTL_SECONDS", 300),
        catalog_refresh_interval_seconds=_env_int("CATALOG_REFRESH_INTERVAL_SECONDS", 300),
        search_cache_ttl_seconds=_env_int("SEARCH_CACHE_TTL_SECONDS", 180),
        suggestions_cache_ttl_seconds=_env_int("SUGGESTIONS_CACHE_TTL_SECONDS", 300),
        strategy_timeout_seconds=_env_float("STRATEGY_TIMEOUT_SECONDS", 5.0),
        search_max_workers=_env_int("SEARCH_MAX_WORKERS", 8),
        rate_limit_window_ms=_env_int("RATE_LIMIT_WINDOW_MS", 60_000),
        rate_limit_general=_env_int("RATE_LIMIT_GENERAL", 100),
        rate_limit_search=_env_int("RATE_LIMIT_SEARCH", 30),
        rate_limit_user_data=_env_int("RATE_LIMIT_USER_DATA", 60),
        rate_limit_admin=_env_int("RATE_LIMIT_ADMIN", 10),
        rate_limit_clinic=_env_int("RATE_LIMIT_CLINIC", 50),
        rate_limit_recovery_seconds=_env_int("RATE_LIMIT_RECOVERY_SECONDS", 30),
        identity_header=os.getenv("IDENTITY_HEADER", "X-User-Id"),
        port=_env_int("PORT", 8080),
    )
