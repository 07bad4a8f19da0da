"""Response caching, retries with backoff and rate-limit response headers."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

T = TypeVar("T")


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


@dataclass(frozen=True)
class _CacheEntry:
    response: str
    content_type: str
    expiry: float

    def to_json(self) -> str:
        return json.dumps(
            {"response": self.response, "content_type": self.content_type, "expiry": self.expiry}
        )

    @classmethod
    def from_json(cls, raw: Any) -> _CacheEntry | None:
        try:
            data = json.loads(_text(raw))
            return cls(str(data["response"]), str(data["content_type"]), float(data["expiry"]))
        except (ValueError, KeyError, TypeError):
            return None


class ResponseCache:
    """Caches responses for ttl seconds in memory and, if given, in a store.

    The store is any object with Redis-style get, set, keys and delete.
    """

    def __init__(
        self, ttl: float, store: Any = None, clock: Callable[[], float] = time.time
    ) -> None:
        self.ttl = ttl
        self.store = store
        self._clock = clock
        self._local: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> tuple[str, str] | None:
        """(response, content_type) if a fresh entry exists, else None."""
        now = self._clock()
        if self.store is not None:
            raw = self.store.get(f"cache:{key}")
            if raw is not None:
                entry = _CacheEntry.from_json(raw)
                if entry is not None and now < entry.expiry:
                    return entry.response, entry.content_type

        with self._lock:
            entry = self._local.get(key)
            if entry is None:
                return None
            if now < entry.expiry:
                return entry.response, entry.content_type
            del self._local[key]
        return None

    def set(self, key: str, response: str, content_type: str) -> None:
        """Cache a response for the ttl."""
        entry = _CacheEntry(response, content_type, self._clock() + self.ttl)
        if self.store is not None:
            self.store.set(f"cache:{key}", entry.to_json(), px=max(1, int(self.ttl * 1000)))
        with self._lock:
            self._local[key] = entry

    def invalidate(self, pattern: str) -> None:
        """Drop entries matching pattern; "*" makes it a substring match locally."""
        if self.store is not None:
            for stored in self.store.keys(f"cache:{pattern}"):
                self.store.delete(_text(stored))

        with self._lock:
            if "*" in pattern:
                fragment = pattern.replace("*", "")
                for key in [k for k in self._local if fragment in k]:
                    del self._local[key]
            else:
                self._local.pop(pattern, None)

    def purge_expired(self) -> int:
        """Drop expired in-memory entries; return how many."""
        now = self._clock()
        with self._lock:
            expired = [k for k, entry in self._local.items() if now > entry.expiry]
            for key in expired:
                del self._local[key]
        return len(expired)


class RetriesExhausted(Exception):
    """Raised when every attempt of an operation failed."""

    def __init__(self, last_error: BaseException) -> None:
        super().__init__(f"max retries exceeded: {last_error}")
        self.last_error = last_error


class NodeRetryHandler:
    """Retries operations with linear backoff and knows fallback nodes."""

    def __init__(
        self,
        max_retries: int,
        backoff_base: float,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._fallbacks: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def set_fallback(self, primary_node: str, fallbacks: list[str]) -> None:
        """Set the nodes to use when primary_node fails."""
        with self._lock:
            self._fallbacks[primary_node] = list(fallbacks)

    def get_fallback(self, primary_node: str) -> str | None:
        """The first fallback of primary_node, if it has any."""
        with self._lock:
            fallbacks = self._fallbacks.get(primary_node)
        return fallbacks[0] if fallbacks else None

    def execute_with_retry(self, fn: Callable[[str], T]) -> T:
        """Call fn("") until it returns, up to max_retries extra times.

        Waits backoff_base times the attempt number between attempts and
        raises RetriesExhausted with the last error when all fail.
        """
        last_error: BaseException | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return fn("")
            except Exception as exc:
                last_error = exc
            if attempt < self.max_retries:
                self._sleep(self.backoff_base * (attempt + 1))
        assert last_error is not None
        raise RetriesExhausted(last_error) from last_error


class RateLimitHeaders:
    """Builds the X-RateLimit-* and Retry-After response headers."""

    def __init__(
        self,
        enabled: bool,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.enabled = enabled
        self.header_limit = "X-RateLimit-Limit"
        self.header_remaining = "X-RateLimit-Remaining"
        self.header_reset = "X-RateLimit-Reset"
        self.header_retry_after = "Retry-After"
        self._clock = clock

    def headers(self, limit: int, remaining: int, reset: datetime) -> dict[str, str]:
        """Headers describing the limit; empty when disabled."""
        if not self.enabled:
            return {}
        result = {
            self.header_limit: str(limit),
            self.header_remaining: str(remaining),
            self.header_reset: str(int(reset.timestamp())),
        }
        if remaining == 0:
            retry_after = (reset - self._clock()).total_seconds()
            if retry_after > 0:
                result[self.header_retry_after] = f"{retry_after:.0f}"
        return result