"""Detection of repeated requests within a time window."""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

DEFAULT_TTL = 30.0


@dataclass
class DedupRequest:
    """A request fingerprint and the node that first served it."""

    hash: str
    created_at: float
    node_id: str


def _header(headers: Mapping[str, str], name: str) -> str:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return ""


class RequestDedup:
    """Remembers request fingerprints for ttl seconds."""

    def __init__(
        self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl = ttl if ttl > 0 else DEFAULT_TTL
        self._clock = clock
        self._requests: dict[str, DedupRequest] = {}
        self._lock = threading.Lock()

    def compute_hash(self, method: str, url: str, body: str, user: str) -> str:
        """SHA-256 hex digest of the request's identifying fields."""
        data = f"{method}|{url}|{body}|{user}"
        return hashlib.sha256(data.encode()).hexdigest()

    def check_and_mark(self, request_hash: str, node_id: str) -> tuple[bool, str]:
        """Return (True, "") for a new request, else (False, first node id)."""
        now = self._clock()
        with self._lock:
            existing = self._requests.get(request_hash)
            if existing is not None and now - existing.created_at < self.ttl:
                return False, existing.node_id
            self._requests[request_hash] = DedupRequest(request_hash, now, node_id)
        return True, ""

    def response_headers(
        self, method: str, url: str, headers: Mapping[str, str]
    ) -> dict[str, str]:
        """Mark a request and return the X-Dedup headers to send back."""
        request_hash = self.compute_hash(
            method, url, _header(headers, "Content-Type"), _header(headers, "X-User")
        )
        node_id = _header(headers, "X-Node-ID") or "unknown"
        is_new, existing_node = self.check_and_mark(request_hash, node_id)
        if is_new:
            return {"X-Dedup": "MISS"}
        return {"X-Dedup": "HIT", "X-Dedup-Node": existing_node}

    def purge_expired(self) -> int:
        """Drop fingerprints older than the ttl; return how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, request in self._requests.items()
                if now - request.created_at > self.ttl
            ]
            for key in expired:
                del self._requests[key]
        return len(expired)