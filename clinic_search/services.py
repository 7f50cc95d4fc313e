"""Process-wide service container: built once at startup, closed at shutdown."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

import redis

from clinic_search.core.cache import CacheStore, build_cache_store, build_redis_client
from clinic_search.core.catalog import (
    CatalogRefresher,
    CatalogSnapshot,
    CatalogSource,
    DatabaseCatalogSource,
    JsonFileCatalogSource,
)
from clinic_search.core.config import ConfigError, Settings
from clinic_search.core.db import ClinicDatabase
from clinic_search.core.rate_limit import RateLimiter, RedisRateLimitBackend, default_rules
from clinic_search.search.orchestrator import SearchOrchestrator, default_strategies
from clinic_search.search.strategies import TextStrategy
from clinic_search.vendors.fulltext_index import FullTextIndexClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    cache: CacheStore
    rate_limiter: RateLimiter
    catalog: CatalogSnapshot
    orchestrator: SearchOrchestrator
    executor: ThreadPoolExecutor
    source: Optional[CatalogSource] = None
    refresher: Optional[CatalogRefresher] = None
    index_client: Optional[FullTextIndexClient] = None

    def close(self) -> None:
        if self.refresher is not None:
            self.refresher.stop()
        self.executor.shutdown(wait=False, cancel_futures=True)
        if self.index_client is not None:
            self.index_client.close()
        _close_stores(self.cache, self.source)
        logger.info("Services shut down")

    def __enter__(self) -> "Services":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def build_catalog_source(settings: Settings) -> CatalogSource:
    if settings.database_url:
        return DatabaseCatalogSource(ClinicDatabase(settings.database_url))
    if settings.catalog_path:
        return JsonFileCatalogSource(settings.catalog_path)
    raise ConfigError("Set DATABASE_URL or CATALOG_PATH to load the clinic catalog")


def _close_stores(cache: CacheStore, source: Optional[CatalogSource]) -> None:
    cache.close()
    close_source = getattr(source, "close", None)
    if close_source is not None:
        close_source()


def build_services(
    settings: Settings,
    source: Optional[CatalogSource] = None,
    redis_client: Optional["redis.Redis"] = None,
    start_refresher: bool = True,
) -> Services:
    """Wire every collaborator from settings. Fails if no catalog snapshot can load."""
    if redis_client is None and settings.redis_url:
        redis_client = build_redis_client(settings.redis_url, settings.redis_socket_timeout)

    cache = build_cache_store(redis_client)
    rate_limiter = RateLimiter(
        default_rules(settings).values(),
        backend=RedisRateLimitBackend(redis_client) if redis_client is not None else None,
        recovery_seconds=settings.rate_limit_recovery_seconds,
    )

    try:
        source = source or build_catalog_source(settings)
        catalog = CatalogSnapshot(source, ttl_seconds=settings.catalog_ttl_seconds)
        catalog.ensure_loaded()
    except Exception:
        _close_stores(cache, source)
        raise

    index_client = None
    if settings.fulltext_index_url:
        index_client = FullTextIndexClient(
            settings.fulltext_index_url,
            index_name=settings.fulltext_index_name,
            timeout=settings.fulltext_index_timeout,
        )

    executor = ThreadPoolExecutor(max_workers=settings.search_max_workers, thread_name_prefix="search")
    orchestrator = SearchOrchestrator(
        catalog,
        cache,
        executor,
        strategies=default_strategies(TextStrategy(index_client)),
        strategy_timeout=settings.strategy_timeout_seconds,
        search_cache_ttl=settings.search_cache_ttl_seconds,
        suggestions_cache_ttl=settings.suggestions_cache_ttl_seconds,
    )

    refresher = None
    if start_refresher and settings.catalog_refresh_interval_seconds > 0:
        refresher = CatalogRefresher(catalog, settings.catalog_refresh_interval_seconds)
        refresher.start()

    return Services(
        settings=settings,
        cache=cache,
        rate_limiter=rate_limiter,
        catalog=catalog,
        orchestrator=orchestrator,
        executor=executor,
        source=source,
        refresher=refresher,
        index_client=index_client,
    )
