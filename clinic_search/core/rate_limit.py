"""Sliding-window rate limiting shared by every HTTP endpoint class."""

from __future__ import annotations

import itertools
import logging
import random
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, Optional, Tuple

import redis

from clinic_search.core.config import Settings
from clinic_search.models import RateLimitDecision

logger = logging.getLogger(__name__)

SWEEP_PROBABILITY = 0.01
KEY_PREFIX = "rate_limit"

# Trim, count and conditional append run atomically inside Redis.
# ARGV: now_ms, window_ms, limit, member, exclusive cutoff.
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', ARGV[5])
local count = redis.call('ZCARD', key)
if count < limit then
    redis.call('ZADD', key, ARGV[1], ARGV[4])
    redis.call('PEXPIRE', key, ARGV[2])
    return {1, count + 1}
end
return {0, count}
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CallerIdentity:
    remote_addr: str
    user_id: Optional[str] = None


def identity_key(identity: CallerIdentity) -> str:
    return identity.user_id or identity.remote_addr or "anonymous"


@dataclass(frozen=True)
class RateLimitRule:
    """One endpoint class: its own limit, window and key namespace."""

    name: str
    limit: int
    window_ms: int = 60_000
    message: str = "Too many requests, please try again later"
    key_fn: Callable[[CallerIdentity], str] = field(default=identity_key, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("rate limit rule needs a name")
        if self.limit <= 0:
            raise ValueError(f"rate limit for {self.name} must be positive")
        if self.window_ms <= 0:
            raise ValueError(f"rate limit window for {self.name} must be positive")

    def key_for(self, identity: CallerIdentity) -> str:
        return f"{KEY_PREFIX}:{self.name}:{self.key_fn(identity)}"


def default_rules(settings: Settings) -> Dict[str, RateLimitRule]:
    window = settings.rate_limit_window_ms
    rules = [
        RateLimitRule("general", settings.rate_limit_general, window, "Too many requests, please slow down"),
        RateLimitRule(
            "search",
            settings.rate_limit_search,
            window,
            "Too many searches, please wait before searching again",
        ),
        RateLimitRule("user_data", settings.rate_limit_user_data, window, "Too many profile requests, please wait"),
        RateLimitRule("admin", settings.rate_limit_admin, window, "Admin rate limit exceeded"),
        RateLimitRule(
            "clinic",
            settings.rate_limit_clinic,
            window,
            "Too many clinic requests, data is cached for your convenience",
        ),
    ]
    return {rule.name: rule for rule in rules}


@dataclass(slots=True)
class RateWindow:
    timestamps: Deque[int] = field(default_factory=deque)
    window_start: int = 0
    window_ms: int = 0


class MemoryRateLimitBackend:
    """Per-process sliding-window log guarded by a single lock."""

    def __init__(
        self,
        rng: Callable[[], float] = random.random,
        sweep_probability: float = SWEEP_PROBABILITY,
    ) -> None:
        self._windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()
        self._rng = rng
        self._sweep_probability = sweep_probability

    def hit(self, key: str, limit: int, window_ms: int, now_ms: int) -> Tuple[bool, int]:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = self._windows[key] = RateWindow(window_start=now_ms - window_ms, window_ms=window_ms)

            cutoff = now_ms - window_ms
            while window.timestamps and window.timestamps[0] < cutoff:
                window.timestamps.popleft()
            window.window_start = cutoff
            window.window_ms = window_ms

            count = len(window.timestamps)
            allowed = count < limit
            if allowed:
                window.timestamps.append(now_ms)
                count += 1

            if self._rng() < self._sweep_probability:
                self._sweep_locked(now_ms)
        return allowed, count

    def sweep(self, now_ms: int) -> int:
        with self._lock:
            return self._sweep_locked(now_ms)

    def _sweep_locked(self, now_ms: int) -> int:
        stale = [
            key
            for key, window in self._windows.items()
            if not window.timestamps or window.timestamps[-1] < now_ms - window.window_ms
        ]
        for key in stale:
            del self._windows[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RedisRateLimitBackend:
    """Sorted-set sliding window; member scores are request timestamps."""

    def __init__(self, client: "redis.Redis") -> None:
        self._client = client
        self._script = client.register_script(_SLIDING_WINDOW_LUA)
        self._sequence = itertools.count()

    def hit(self, key: str, limit: int, window_ms: int, now_ms: int) -> Tuple[bool, int]:
        member = f"{now_ms}-{next(self._sequence)}-{uuid.uuid4().hex[:8]}"
        allowed, count = self._script(keys=[key], args=[now_ms, window_ms, limit, member, f"({now_ms - window_ms}"])
        return bool(int(allowed)), int(count)


class RateLimiter:
    """Admission control with fail-open semantics.

    When the shared backend faults, the failing call is admitted and later
    calls use the in-process backend until ``recovery_seconds`` elapse.
    """

    def __init__(
        self,
        rules: Iterable[RateLimitRule],
        backend: Optional[RedisRateLimitBackend] = None,
        fallback: Optional[MemoryRateLimitBackend] = None,
        recovery_seconds: float = 30.0,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.rules: Dict[str, RateLimitRule] = {rule.name: rule for rule in rules}
        self._backend = backend
        self._fallback = fallback or MemoryRateLimitBackend()
        self._recovery_ms = int(recovery_seconds * 1000)
        self._clock_ms = clock_ms
        self._degraded_until: Optional[int] = None
        self._state_lock = threading.Lock()

    @property
    def degraded(self) -> bool:
        with self._state_lock:
            return self._degraded_until is not None

    def _use_shared(self, now_ms: int) -> bool:
        if self._backend is None:
            return False
        with self._state_lock:
            if self._degraded_until is None:
                return True
            if now_ms >= self._degraded_until:
                logger.info("Retrying shared rate-limit store after degradation window")
                self._degraded_until = None
                return True
            return False

    def allow(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        now_ms = self._clock_ms()
        reset_at = now_ms + window_ms

        if self._use_shared(now_ms):
            try:
                allowed, count = self._backend.hit(key, limit, window_ms, now_ms)
            except (redis.RedisError, OSError) as exc:
                logger.warning("Rate-limit store unavailable, admitting request and degrading to memory: %s", exc)
                with self._state_lock:
                    self._degraded_until = now_ms + self._recovery_ms
                return RateLimitDecision(allowed=True, current_count=0, limit=limit, reset_at=reset_at)
        else:
            allowed, count = self._fallback.hit(key, limit, window_ms, now_ms)

        return RateLimitDecision(allowed=allowed, current_count=count, limit=limit, reset_at=reset_at)

    def check(self, rule_name: str, identity: CallerIdentity) -> RateLimitDecision:
        rule = self.rules[rule_name]
        return self.allow(rule.key_for(identity), rule.limit, rule.window_ms)

    def now_ms(self) -> int:
        return self._clock_ms()
