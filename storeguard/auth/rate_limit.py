"""
Rate Limiting Module

Fixed-window request throttling keyed by a caller-chosen identifier (IP,
user id, API key). The limiter does not care what the identifier means.

- First request for a key, or first after its window has elapsed, opens a
  new window with count 1.
- Later requests increment the count; once it exceeds max_attempts the
  request is refused. A policy with block_duration_ms pushes the window end
  further out when the limit is first exceeded.
- A background sweep removes elapsed entries so memory stays bounded.

State is in-process. Multi-instance deployments pass a shared store with
the same transaction()/cleanup() surface.
"""

import logging
import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, Optional

from ..config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Args:
        max_attempts: Requests allowed per window
        window_ms: Window length in milliseconds
        block_duration_ms: Extra cool-down added when the limit is exceeded
    """
    max_attempts: int
    window_ms: int
    block_duration_ms: Optional[int] = None


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after_seconds: Optional[int] = None

    @property
    def reset_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


MINUTE_MS = 60 * 1000

RATE_LIMITS: Dict[str, RateLimitConfig] = {
    # Authentication endpoints
    'auth': RateLimitConfig(5, 15 * MINUTE_MS, block_duration_ms=30 * MINUTE_MS),
    'login': RateLimitConfig(5, 5 * MINUTE_MS),
    'password_reset': RateLimitConfig(3, 60 * MINUTE_MS),
    # PIN entry at the register
    'pin': RateLimitConfig(3, 5 * MINUTE_MS, block_duration_ms=15 * MINUTE_MS),
    # General API use
    'api': RateLimitConfig(100, MINUTE_MS),
    # Bulk delete, export and similar
    'heavy': RateLimitConfig(10, 5 * MINUTE_MS),
    'delete': RateLimitConfig(20, MINUTE_MS),
}


def build_identifier(kind: str, ip: Optional[str] = None,
                     user_id: Optional[str] = None) -> str:
    """
    Build a limiter key.

    Args:
        kind: 'ip', 'user' (falls back to ip) or 'combined' ('user:ip')
    """
    ip = ip or 'unknown'
    if kind == 'user':
        return user_id or ip
    if kind == 'combined':
        return f"{user_id}:{ip}" if user_id else ip
    return ip


def get_rate_limit_headers(result: RateLimitResult, config: RateLimitConfig) -> Dict[str, str]:
    """X-RateLimit-* headers, plus Retry-After for refused requests."""
    headers = {
        'X-RateLimit-Limit': str(config.max_attempts),
        'X-RateLimit-Remaining': str(result.remaining),
        'X-RateLimit-Reset': result.reset_at_datetime.isoformat(),
    }
    if not result.allowed and result.retry_after_seconds is not None:
        headers['Retry-After'] = str(result.retry_after_seconds)
    return headers


class InMemoryRateLimitStore:
    """Lock-guarded identifier -> RateLimitEntry map."""

    def __init__(self):
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, RateLimitEntry]]:
        with self._lock:
            yield self._entries

    def get(self, identifier: str) -> Optional[RateLimitEntry]:
        with self._lock:
            return self._entries.get(identifier)

    def delete(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(identifier, None)

    def cleanup(self, now: float) -> int:
        with self._lock:
            elapsed = [k for k, e in self._entries.items() if e.reset_at <= now]
            for key in elapsed:
                del self._entries[key]
        return len(elapsed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RateLimiter:
    """
    Fixed-window rate limiter.

    Example:
        >>> limiter = RateLimiter()
        >>> result = limiter.check_rate_limit("203.0.113.9", RATE_LIMITS['auth'])
        >>> result.allowed, result.remaining
        (True, 4)
    """

    def __init__(self, store: Optional[InMemoryRateLimitStore] = None,
                 clock: Callable[[], float] = time.time):
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock
        self._cleanup_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def store(self) -> InMemoryRateLimitStore:
        return self._store

    def check_rate_limit(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Count one request for ``identifier`` and decide whether it may proceed.
        """
        now = self._clock()
        window = config.window_ms / 1000

        with self._store.transaction() as entries:
            entry = entries.get(identifier)

            if entry is None or now >= entry.reset_at:
                entry = RateLimitEntry(count=1, reset_at=now + window)
                entries[identifier] = entry
                return RateLimitResult(True, config.max_attempts - 1, entry.reset_at)

            entry.count += 1
            if config.block_duration_ms and entry.count == config.max_attempts + 1:
                entry.reset_at += config.block_duration_ms / 1000
            count, reset_at = entry.count, entry.reset_at

        if count > config.max_attempts:
            retry_after = max(math.ceil(reset_at - now), 1)
            if count == config.max_attempts + 1:
                logger.warning("Rate limit exceeded for %s", identifier)
            return RateLimitResult(False, 0, reset_at, retry_after_seconds=retry_after)

        return RateLimitResult(True, config.max_attempts - count, reset_at)

    def reset(self, identifier: str) -> None:
        self._store.delete(identifier)

    def cleanup(self) -> int:
        """Remove entries whose window has elapsed."""
        removed = self._store.cleanup(self._clock())
        if removed:
            logger.debug("Rate limit sweep removed %d entries", removed)
        return removed

    def start_cleanup(self, interval: Optional[float] = None) -> None:
        """Run cleanup() every ``interval`` seconds on a daemon thread."""
        if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
            return

        interval = interval or get_settings().RATE_LIMIT_CLEANUP_INTERVAL_SECONDS
        self._stop_event.clear()

        def run() -> None:
            while not self._stop_event.wait(interval):
                self.cleanup()

        self._cleanup_thread = threading.Thread(
            target=run, name="rate-limit-cleanup", daemon=True
        )
        self._cleanup_thread.start()

    def stop_cleanup(self) -> None:
        self._stop_event.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=5)
            self._cleanup_thread = None
