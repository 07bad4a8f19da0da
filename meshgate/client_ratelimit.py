"""Per-client request rate limiting over fixed time windows."""

from __future__ import annotations

import ipaddress
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(network)
    for network in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)


class RateLimitExceeded(Exception):
    """Raised when a client has used up its requests for the window."""

    def __init__(self, client_ip: str, limit: int, retry_after: int) -> None:
        super().__init__("Rate limit exceeded")
        self.client_ip = client_ip
        self.limit = limit
        self.retry_after = retry_after


@dataclass
class _ClientWindow:
    count: int
    expires_at: float


class ClientRateLimiter:
    """Counts requests per client IP.

    With a store (any object with the incr/expire/get/set/delete methods of a
    Redis client) counters and per-client limits are shared through it;
    otherwise they are kept in memory.
    """

    def __init__(
        self,
        default_limit: int,
        window_seconds: int,
        store: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self.store = store
        self._clock = clock
        self._windows: dict[str, _ClientWindow] = {}
        self._limits: dict[str, int] = {}
        self._lock = threading.Lock()

    def check(self, client_ip: str) -> bool:
        """Count a request; raise RateLimitExceeded if it is over the limit."""
        if self.is_whitelisted(client_ip):
            return True

        limit = self._effective_limit(client_ip)
        if self.store is not None:
            allowed = self._check_store(client_ip, limit)
        else:
            allowed = self._check_local(client_ip, limit)
        if not allowed:
            raise RateLimitExceeded(client_ip, limit, self.window_seconds)
        return True

    def _effective_limit(self, client_ip: str) -> int:
        try:
            limit = self.get_client_limit(client_ip)
        except Exception:  # an unreadable limit falls back to the default
            limit = 0
        return limit or self.default_limit

    def _check_store(self, client_ip: str, limit: int) -> bool:
        key = f"client_rate:{client_ip}"
        count = int(self.store.incr(key))
        if count == 1:
            self.store.expire(key, self.window_seconds)
        return count <= limit

    def _check_local(self, client_ip: str, limit: int) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(client_ip)
            if window is not None and now < window.expires_at:
                if window.count >= limit:
                    return False
                window.count += 1
                return True
            self._windows[client_ip] = _ClientWindow(1, now + self.window_seconds)
        return True

    def is_whitelisted(self, client_ip: str) -> bool:
        """Loopback and private addresses are never limited."""
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

    def set_client_limit(self, client_ip: str, limit: int) -> None:
        """Give a client its own request limit per window."""
        if self.store is not None:
            self.store.set(f"client_limit:{client_ip}", limit)
            return
        with self._lock:
            self._limits[client_ip] = limit

    def get_client_limit(self, client_ip: str) -> int:
        """The client's request limit, or the default limit."""
        if self.store is not None:
            value = self.store.get(f"client_limit:{client_ip}")
            return self.default_limit if value is None else int(value)
        with self._lock:
            return self._limits.get(client_ip, self.default_limit)

    def remove_client_limit(self, client_ip: str) -> None:
        """Return the client to the default limit."""
        if self.store is not None:
            self.store.delete(f"client_limit:{client_ip}")
            return
        with self._lock:
            self._limits.pop(client_ip, None)

    def purge_expired(self) -> int:
        """Forget in-memory windows that have ended; return how many."""
        now = self._clock()
        with self._lock:
            expired = [ip for ip, window in self._windows.items() if now > window.expires_at]
            for ip in expired:
                del self._windows[ip]
        return len(expired)