"""CLI job run after a catalog write: verify the catalog loads and drop cached searches."""

import argparse
import logging
from typing import List, Optional, Sequence

from clinic_search.core.cache import build_cache_store, build_redis_client
from clinic_search.core.catalog import CatalogSnapshot
from clinic_search.core.config import get_settings
from clinic_search.services import build_catalog_source

logger = logging.getLogger(__name__)

DEFAULT_PREFIXES = ("search:", "suggestions:")


def run_refresh_job(*, prefixes: Sequence[str] = DEFAULT_PREFIXES, skip_reload: bool = False) -> int:
    """Returns the number of cache entries removed."""
    settings = get_settings()

    if not skip_reload:
        catalog = CatalogSnapshot(build_catalog_source(settings))
        if not catalog.refresh():
            raise RuntimeError(f"Catalog reload failed: {catalog.last_error}")
        logger.info("Catalog reloaded with %d clinics", catalog.stats()["size"])

    redis_client = None
    if settings.redis_url:
        redis_client = build_redis_client(settings.redis_url, settings.redis_socket_timeout)
    cache = build_cache_store(redis_client)

    removed = 0
    try:
        for prefix in prefixes:
            count = cache.invalidate_pattern(prefix)
            logger.info("Invalidated %d cache entries with prefix %s", count, prefix)
            removed += count
    finally:
        cache.close()
    return removed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reload the clinic catalog and invalidate cached searches")
    parser.add_argument(
        "--prefix",
        dest="prefixes",
        action="append",
        help="Cache key prefix to invalidate (repeatable, defaults to search: and suggestions:)",
    )
    parser.add_argument(
        "--skip-reload",
        dest="skip_reload",
        action="store_true",
        help="Only invalidate caches, do not verify the catalog source",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        removed = run_refresh_job(prefixes=args.prefixes or DEFAULT_PREFIXES, skip_reload=args.skip_reload)
    except Exception as exc:  # noqa: BLE001
        logger.error("Catalog refresh job failed: %s", exc)
        raise SystemExit(1) from exc

    logger.info("Catalog refresh job complete: %d cache entries removed", removed)


if __name__ == "__main__":
    main()
