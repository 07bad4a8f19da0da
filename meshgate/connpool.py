"""A per-address pool of idle TCP connections."""

from __future__ import annotations

import socket
import threading
from collections import deque
from dataclasses import dataclass, field


def _split_host_port(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"missing port in address {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


@dataclass
class _NodePool:
    addr: str
    conns: deque = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)
    active: int = 0


class ConnPool:
    """Keeps up to max_per_node idle connections for each address."""

    def __init__(self, max_per_node: int, dial_timeout: float) -> None:
        self.max_size = max_per_node
        self.timeout = dial_timeout
        self._pools: dict[str, _NodePool] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> ConnPool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _pool(self, addr: str) -> _NodePool:
        with self._lock:
            pool = self._pools.get(addr)
            if pool is None:
                pool = self._pools[addr] = _NodePool(addr)
            return pool

    def get(self, addr: str) -> socket.socket:
        """Return a pooled connection to addr, or dial a new one."""
        pool = self._pool(addr)
        with pool.lock:
            if pool.conns:
                pool.active -= 1
                return pool.conns.popleft()

        try:
            host, port = _split_host_port(addr)
            conn = socket.create_connection((host, port), timeout=self.timeout)
        except (OSError, ValueError) as exc:
            raise ConnectionError(f"failed to connect to {addr}: {exc}") from exc
        conn.settimeout(None)
        return conn

    def put(self, addr: str, conn: socket.socket | None) -> None:
        """Return conn to the pool, closing it if the pool is full."""
        if conn is None:
            return
        pool = self._pool(addr)
        with pool.lock:
            if pool.active < self.max_size:
                pool.active += 1
                pool.conns.append(conn)
                return
        conn.close()

    def close(self) -> None:
        """Close every pooled connection and forget all addresses."""
        with self._lock:
            pools, self._pools = self._pools, {}
        for pool in pools.values():
            with pool.lock:
                while pool.conns:
                    pool.conns.popleft().close()
                pool.active = 0

    def stats(self) -> dict[str, int]:
        """Number of idle connections held for each address."""
        with self._lock:
            pools = list(self._pools.items())
        result = {}
        for addr, pool in pools:
            with pool.lock:
                result[addr] = pool.active
        return result