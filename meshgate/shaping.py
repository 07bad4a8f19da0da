"""Per-client bandwidth shaping and blocking of abusive clients."""

from __future__ import annotations

import ipaddress
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

SHAPER_KEY_TTL = 24 * 60 * 60
IDLE_LIMIT = 10 * 60

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(network)
    for network in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)


def _is_local_address(client_ip: str) -> bool:
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    if address.is_loopback:
        return True
    return any(
        address.version == network.version and address in network
        for network in _PRIVATE_NETWORKS
    )


def _millis(seconds: float) -> int:
    return max(1, int(seconds * 1000))


@dataclass
class _Bandwidth:
    tokens: int
    last_update: float
    rate: int
    burst: int


class TrafficShaper:
    """A token bucket of bytes per client IP."""

    def __init__(
        self,
        default_rate: int,
        default_burst: int,
        store: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_rate = default_rate
        self.default_burst = default_burst
        self.store = store
        self._clock = clock
        self._buckets: dict[str, _Bandwidth] = {}
        self._lock = threading.Lock()

    def set_client_rate(self, client_ip: str, rate: int, burst: int) -> None:
        """Save a client's rate and burst in the store for a day."""
        if self.store is None:
            return
        key = f"shaper:{client_ip}"
        self.store.hset(key, "rate", rate)
        self.store.hset(key, "burst", burst)
        self.store.expire(key, SHAPER_KEY_TTL)

    def check_bandwidth(self, client_ip: str, nbytes: int) -> bool:
        """Take nbytes tokens from the client's bucket; False if there are too few.

        A client seen for the first time gets a full bucket and is let through.
        """
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(client_ip)
            if bucket is None:
                self._buckets[client_ip] = _Bandwidth(
                    self.default_burst, now, self.default_rate, self.default_burst
                )
                return True

            bucket.tokens += int(bucket.rate * (now - bucket.last_update))
            bucket.tokens = min(bucket.tokens, bucket.burst)
            if bucket.tokens >= nbytes:
                bucket.tokens -= nbytes
                bucket.last_update = now
                return True
            return False

    def allow(self, client_ip: str) -> bool:
        """Whether a request from client_ip may proceed; local addresses always may."""
        if _is_local_address(client_ip):
            return True
        return self.check_bandwidth(client_ip, 0)

    def purge_idle(self) -> int:
        """Forget clients idle for over ten minutes; return how many."""
        now = self._clock()
        with self._lock:
            idle = [
                ip for ip, bucket in self._buckets.items() if now - bucket.last_update > IDLE_LIMIT
            ]
            for ip in idle:
                del self._buckets[ip]
        return len(idle)


@dataclass
class _FailureStats:
    count: int
    first_fail: float
    last_fail: float


class DDoSProtection:
    """Blocks clients that fail too often within a window.

    With a store (Redis-style incr, expire, set, exists, delete) failures and
    blocks are shared through it; otherwise failures are counted in memory.
    """

    def __init__(
        self,
        threshold: int,
        window_seconds: int,
        block_duration: float,
        store: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.block_duration = block_duration
        self.store = store
        self._clock = clock
        self._failures: dict[str, _FailureStats] = {}
        self._whitelist: set[str] = set()
        self._lock = threading.Lock()

    def allow(self, client_ip: str) -> bool:
        """Whether a request from client_ip may proceed."""
        if self.is_whitelisted(client_ip):
            return True
        return not self.is_blocked(client_ip)

    def record_failure(self, client_ip: str) -> None:
        """Count a failed request; enough of them block the client."""
        if self.store is not None:
            key = f"ddos:failed:{client_ip}"
            count = int(self.store.incr(key))
            if count == 1:
                self.store.expire(key, self.window_seconds)
            if count >= self.threshold:
                self.block_ip(client_ip)
            return

        now = self._clock()
        with self._lock:
            stats = self._failures.get(client_ip)
            if stats is None:
                stats = self._failures[client_ip] = _FailureStats(0, now, now)
            stats.count += 1
            stats.last_fail = now

    def is_blocked(self, client_ip: str) -> bool:
        """Whether the client is currently blocked."""
        if self.store is not None:
            return int(self.store.exists(f"ddos:blocked:{client_ip}")) > 0

        with self._lock:
            stats = self._failures.get(client_ip)
            if stats is None or stats.count < self.threshold:
                return False
            window_start = self._clock() - self.window_seconds
            return stats.first_fail > window_start

    def block_ip(self, client_ip: str) -> None:
        """Block a client in the store for the block duration."""
        if self.store is not None:
            self.store.set(f"ddos:blocked:{client_ip}", 1, px=_millis(self.block_duration))

    def unblock_ip(self, client_ip: str) -> None:
        """Lift a block from the store."""
        if self.store is not None:
            self.store.delete(f"ddos:blocked:{client_ip}")

    def add_to_whitelist(self, ip: str) -> None:
        """Never block ip."""
        with self._lock:
            self._whitelist.add(ip)

    def remove_from_whitelist(self, ip: str) -> None:
        """Treat ip like any other client again."""
        with self._lock:
            self._whitelist.discard(ip)

    def is_whitelisted(self, client_ip: str) -> bool:
        """Whether client_ip is on the whitelist."""
        with self._lock:
            return client_ip in self._whitelist