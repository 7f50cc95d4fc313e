"""Key/value caching with a shared Redis store and an in-process fallback."""

from __future__ import annotations

import hashlib
import json
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis

from clinic_search.models import SearchQuery

logger = logging.getLogger(__name__)

SWEEP_PROBABILITY = 0.01
MISSING = "-"
_REDIS_FAULTS = (redis.RedisError, OSError)


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class CacheStore:
    """Contract shared by every cache implementation.

    ``get`` returns ``None`` on a miss, so ``None`` itself is never cached.
    """

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        raise NotImplementedError

    def invalidate_pattern(self, prefix: str) -> int:
        raise NotImplementedError

    def stats(self) -> Dict[str, Any]:
        raise NotImplementedError

    def close(self) -> None:
        """Release any held connections."""


class MemoryCacheStore(CacheStore):
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
        sweep_probability: float = SWEEP_PROBABILITY,
    ) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._rng = rng
        self._sweep_probability = sweep_probability

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if value is None:
            return
        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=now + ttl_seconds)
            if self._rng() < self._sweep_probability:
                self._sweep_locked(now)

    def invalidate_pattern(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {"type": "memory", "size": len(self), "connected": True}


class RedisCacheStore(CacheStore):
    """Redis-backed cache; any Redis fault degrades to ``fallback`` for that call."""

    def __init__(self, client: "redis.Redis", fallback: Optional[MemoryCacheStore] = None) -> None:
        self._client = client
        self._fallback = fallback or MemoryCacheStore()

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(key)
        except _REDIS_FAULTS as exc:
            logger.warning("Redis get failed for %s, using local cache: %s", key, exc)
            return self._fallback.get(key)
        if raw is None:
            return self._fallback.get(key)
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache value for %s", key)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if value is None:
            return
        try:
            self._client.setex(key, ttl_seconds, json.dumps(value))
        except _REDIS_FAULTS as exc:
            logger.warning("Redis set failed for %s, using local cache: %s", key, exc)
            self._fallback.set(key, value, ttl_seconds)

    def invalidate_pattern(self, prefix: str) -> int:
        removed = self._fallback.invalidate_pattern(prefix)
        try:
            keys = list(self._client.scan_iter(match=f"{prefix}*", count=500))
            if keys:
                removed += self._client.delete(*keys)
        except _REDIS_FAULTS as exc:
            logger.warning("Redis invalidation failed for prefix %s: %s", prefix, exc)
        return removed

    def stats(self) -> Dict[str, Any]:
        try:
            connected = bool(self._client.ping())
        except _REDIS_FAULTS:
            connected = False
        return {"type": "redis", "connected": connected, "fallbackSize": len(self._fallback)}

    def close(self) -> None:
        try:
            self._client.close()
        except _REDIS_FAULTS as exc:
            logger.debug("Error closing Redis client: %s", exc)


def build_redis_client(url: str, socket_timeout: float) -> "redis.Redis":
    return redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


def build_cache_store(redis_client: Optional["redis.Redis"]) -> CacheStore:
    """Pick the cache implementation once, at startup."""
    if redis_client is None:
        logger.info("Using in-process cache")
        return MemoryCacheStore()
    logger.info("Using Redis cache with in-process fallback")
    return RedisCacheStore(redis_client)


def _hash_payload(payload: Dict[str, Any]) -> str:
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def search_cache_key(query: SearchQuery) -> str:
    """Deterministic fixed-length key for a normalised search request."""
    origin = query.origin
    payload = {
        "query": query.text.lower() or MISSING,
        "lat": origin.lat if origin is not None else MISSING,
        "lng": origin.lng if origin is not None else MISSING,
        "pincode": query.pincode or MISSING,
        "radius": query.radius_km,
        "filters": query.filters.to_dict(),
        "limit": query.limit,
        "offset": query.offset,
    }
    return f"search:{_hash_payload(payload)}"


def suggestions_cache_key(text: str) -> str:
    return f"suggestions:{text.strip().lower()}"
