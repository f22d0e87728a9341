"""Per-user rate limiting for coaching requests.

Implements a fixed-window counter: each user gets `max_requests` requests per
window, and the window starts on the first request after the previous one
expired. A pair of windows straddling a boundary can therefore admit up to
2x max_requests in a short span; this is a known approximation of the
algorithm, not a bug.

Design:
- State lives in an injected RateLimitStore built at service start
- The read-check-increment sequence is atomic per key
  (per-key lock in memory, a Lua script in Redis)
- Denied requests are reported with the remaining wait; nothing is queued
  or retried

Example:
    >>> from networth_coach.rate_limiter import RateLimiter, InMemoryRateLimitStore
    >>> limiter = RateLimiter(InMemoryRateLimitStore(), max_requests=20, window_ms=60_000)
    >>> decision = limiter.check_rate_limit("u1")
    >>> decision.allowed, decision.remaining
    (True, 19)
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional

import redis

from .errors import RateLimitError

logger = logging.getLogger("networth_coach.rate_limiter")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitEntry:
    """Counter for one user's live window."""
    count: int
    window_reset_at: int  # epoch milliseconds


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""
    allowed: bool
    remaining: Optional[int] = None
    reset_in_ms: Optional[int] = None


@dataclass
class RateLimitStats:
    """Rate limit statistics for monitoring."""
    total_requests: int
    allowed_requests: int
    rejected_requests: int
    unique_identifiers: int

    @property
    def rejection_rate(self) -> float:
        """Rate of rejected requests (0.0-1.0)."""
        if self.total_requests == 0:
            return 0.0
        return self.rejected_requests / self.total_requests

    def to_dict(self) -> dict:
        """Convert stats to dictionary."""
        return {
            "total_requests": self.total_requests,
            "allowed_requests": self.allowed_requests,
            "rejected_requests": self.rejected_requests,
            "unique_identifiers": self.unique_identifiers,
            "rejection_rate": self.rejection_rate
        }


class RateLimitStore(ABC):
    """Shared counter storage keyed by user id."""

    @abstractmethod
    def hit(
        self,
        identifier: str,
        max_requests: int,
        window_ms: int,
        now_ms: int
    ) -> RateLimitDecision:
        """Atomically apply one request to the identifier's window."""

    @abstractmethod
    def clear(self, identifier: Optional[str] = None) -> None:
        """Drop one identifier's entry, or all entries."""

    @abstractmethod
    def size(self) -> int:
        """Number of identifiers currently tracked."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store with one lock per key.

    Requests for different users never contend; two concurrent requests for
    the same user serialize on that user's lock, so both cannot observe
    count < max and slip past the limit.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, RateLimitEntry] = {}
        self._locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()

    def _lock_for(self, identifier: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(identifier)
            if lock is None:
                lock = Lock()
                self._locks[identifier] = lock
            return lock

    def hit(
        self,
        identifier: str,
        max_requests: int,
        window_ms: int,
        now_ms: int
    ) -> RateLimitDecision:
        with self._lock_for(identifier):
            entry = self._entries.get(identifier)

            # No entry or expired window: replace, don't increment
            if entry is None or now_ms >= entry.window_reset_at:
                self._entries[identifier] = RateLimitEntry(
                    count=1,
                    window_reset_at=now_ms + window_ms
                )
                return RateLimitDecision(
                    allowed=True,
                    remaining=max_requests - 1,
                    reset_in_ms=window_ms
                )

            if entry.count < max_requests:
                entry.count += 1
                return RateLimitDecision(
                    allowed=True,
                    remaining=max_requests - entry.count,
                    reset_in_ms=entry.window_reset_at - now_ms
                )

            return RateLimitDecision(
                allowed=False,
                reset_in_ms=entry.window_reset_at - now_ms
            )

    def get_entry(self, identifier: str) -> Optional[RateLimitEntry]:
        """Return a copy of the identifier's entry (for inspection)."""
        with self._lock_for(identifier):
            entry = self._entries.get(identifier)
            if entry is None:
                return None
            return RateLimitEntry(entry.count, entry.window_reset_at)

    def clear(self, identifier: Optional[str] = None) -> None:
        if identifier is not None:
            with self._lock_for(identifier):
                self._entries.pop(identifier, None)
            return
        with self._locks_guard:
            self._entries.clear()
            self._locks.clear()

    def size(self) -> int:
        with self._locks_guard:
            return len(self._entries)


# KEYS[1] = counter key; ARGV[1] = max requests; ARGV[2] = window ms.
# The key's TTL is the window: an expired key is a fresh window.
_FIXED_WINDOW_SCRIPT = """
local count = tonumber(redis.call('GET', KEYS[1]) or '0')
local limit = tonumber(ARGV[1])
if count >= limit then
  return {0, count, redis.call('PTTL', KEYS[1])}
end
count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return {1, count, redis.call('PTTL', KEYS[1])}
"""


class RedisRateLimitStore(RateLimitStore):
    """Redis-backed store for multi-process deployments.

    The whole check-and-increment runs as one Lua script, so it is atomic
    across every process sharing the Redis instance.
    """

    KEY_PREFIX = "ratelimit:"

    def __init__(self, client: "redis.Redis") -> None:
        self._redis = client
        self._script = client.register_script(_FIXED_WINDOW_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisRateLimitStore":
        client = redis.from_url(
            redis_url,
            socket_connect_timeout=1,
            socket_timeout=1
        )
        client.ping()
        return cls(client)

    def hit(
        self,
        identifier: str,
        max_requests: int,
        window_ms: int,
        now_ms: int
    ) -> RateLimitDecision:
        allowed, count, ttl = self._script(
            keys=[f"{self.KEY_PREFIX}{identifier}"],
            args=[max_requests, window_ms]
        )
        count = int(count)
        ttl = int(ttl)
        # PTTL is negative when the key has no expiry; treat as a full window
        reset_in = ttl if ttl >= 0 else window_ms
        if int(allowed) == 1:
            return RateLimitDecision(
                allowed=True,
                remaining=max_requests - count,
                reset_in_ms=reset_in
            )
        return RateLimitDecision(allowed=False, reset_in_ms=reset_in)

    def clear(self, identifier: Optional[str] = None) -> None:
        if identifier is not None:
            self._redis.delete(f"{self.KEY_PREFIX}{identifier}")
            return
        keys = list(self._redis.scan_iter(match=f"{self.KEY_PREFIX}*"))
        if keys:
            self._redis.delete(*keys)

    def size(self) -> int:
        return sum(1 for _ in self._redis.scan_iter(match=f"{self.KEY_PREFIX}*"))


def build_rate_limit_store(redis_url: Optional[str] = None) -> RateLimitStore:
    """Create the store for service start.

    Uses Redis when a URL is configured and reachable, otherwise the
    in-memory store.
    """
    if redis_url:
        try:
            return RedisRateLimitStore.from_url(redis_url)
        except redis.RedisError as e:
            logger.warning("Redis unavailable for rate limiting, using in-memory store: %s", e)
    return InMemoryRateLimitStore()


class RateLimiter:
    """Fixed-window rate limiter over an injected store.

    Attributes:
        max_requests: Maximum requests allowed per window
        window_ms: Window length in milliseconds
        enabled: Whether rate limiting is enabled

    Example:
        >>> limiter = RateLimiter(InMemoryRateLimitStore(), max_requests=2, window_ms=60_000)
        >>> limiter.check_limit("u1")
        >>> limiter.check_limit("u1")
        >>> limiter.check_limit("u1")  # raises RateLimitError
    """

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        max_requests: int = 20,
        window_ms: int = 60_000,
        enabled: bool = True,
        clock: Optional[Callable[[], int]] = None
    ):
        """Initialize rate limiter.

        Args:
            store: Counter storage (default: new in-memory store)
            max_requests: Maximum requests per window (default: 20)
            window_ms: Window length in milliseconds (default: 60000)
            enabled: Whether to enable rate limiting (default: True)
            clock: Returns "now" in epoch milliseconds (default: wall clock)
        """
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._max_requests = max_requests
        self._window_ms = window_ms
        self._enabled = enabled
        self._clock = clock or _now_ms

        self._stats = RateLimitStats(
            total_requests=0,
            allowed_requests=0,
            rejected_requests=0,
            unique_identifiers=0
        )
        self._stats_lock = Lock()

    def check_rate_limit(
        self,
        identifier: str,
        max_requests: Optional[int] = None,
        window_ms: Optional[int] = None
    ) -> RateLimitDecision:
        """Count one request for identifier and decide whether it may proceed.

        Args:
            identifier: User ID
            max_requests: Override the configured per-window maximum
            window_ms: Override the configured window length

        Returns:
            RateLimitDecision with remaining budget (allowed) or reset time (denied)
        """
        if not self._enabled:
            with self._stats_lock:
                self._stats.total_requests += 1
                self._stats.allowed_requests += 1
            return RateLimitDecision(allowed=True)

        limit = max_requests if max_requests is not None else self._max_requests
        window = window_ms if window_ms is not None else self._window_ms

        decision = self._store.hit(identifier, limit, window, self._clock())

        with self._stats_lock:
            self._stats.total_requests += 1
            if decision.allowed:
                self._stats.allowed_requests += 1
            else:
                self._stats.rejected_requests += 1
        return decision

    def check_limit(self, identifier: str) -> RateLimitDecision:
        """Count one request and raise if the user is over budget.

        Raises:
            RateLimitError: If the window's budget is exhausted
        """
        decision = self.check_rate_limit(identifier)
        if not decision.allowed:
            raise RateLimitError(
                identifier=identifier,
                limit=self._max_requests,
                window_ms=self._window_ms,
                retry_after_ms=decision.reset_in_ms or 0
            )
        return decision

    def get_stats(self) -> RateLimitStats:
        """Get rate limiting statistics."""
        unique = self._store.size()
        with self._stats_lock:
            self._stats.unique_identifiers = unique
            return RateLimitStats(
                total_requests=self._stats.total_requests,
                allowed_requests=self._stats.allowed_requests,
                rejected_requests=self._stats.rejected_requests,
                unique_identifiers=self._stats.unique_identifiers
            )

    def reset_stats(self) -> None:
        """Reset statistics to zero."""
        with self._stats_lock:
            self._stats = RateLimitStats(
                total_requests=0,
                allowed_requests=0,
                rejected_requests=0,
                unique_identifiers=0
            )

    def clear(self, identifier: Optional[str] = None) -> None:
        """Clear rate limit data for one identifier, or for everyone."""
        self._store.clear(identifier)

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_ms(self) -> int:
        return self._window_ms
