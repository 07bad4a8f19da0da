"""Cost estimation per client and retention of audit log entries."""

from __future__ import annotations

import contextlib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_GIB = 1024 * 1024 * 1024
_DAYS_PER_MONTH = 30
_DAY_SECONDS = 24 * 60 * 60
_AUDIT_PREFIX = "audit:"


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


@dataclass(frozen=True)
class CostConfig:
    """Prices: a base cost, per GiB each way, per request and per minute."""

    base_cost: float = 0.0
    per_gb_recv: float = 0.15
    per_gb_sent: float = 0.30
    per_request: float = 0.001
    per_minute: float = 0.01


class CostEstimator:
    """Estimates the price of traffic, with per-client multipliers."""

    def __init__(self, store: Any = None) -> None:
        self.store = store
        self._base_costs: dict[str, CostConfig] = {"default": CostConfig()}
        self._client_costs: dict[str, float] = {}
        self._lock = threading.RLock()

    def estimate_request(
        self,
        client_id: str,
        bytes_received: int,
        bytes_sent: int,
        duration_seconds: int,
    ) -> float:
        """Price of one request for a client."""
        with self._lock:
            prices = self._base_costs["default"]
            cost = prices.base_cost + prices.per_request
            if bytes_sent > 0:
                cost += bytes_sent / _GIB * prices.per_gb_sent
            if bytes_received > 0:
                cost += bytes_received / _GIB * prices.per_gb_recv
            if duration_seconds > 0:
                cost += duration_seconds / 60.0 * prices.per_minute
            multiplier = self._client_costs.get(client_id)
            if multiplier is not None:
                cost *= multiplier
        return cost

    def estimate_monthly(
        self,
        client_id: str,
        daily_requests: int,
        avg_bytes_sent: int,
        avg_bytes_received: int,
        avg_duration_seconds: int,
    ) -> float:
        """Price of thirty days of average traffic for a client."""
        total = 0.0
        for _ in range(_DAYS_PER_MONTH):
            per_request = self.estimate_request(
                client_id, avg_bytes_received, avg_bytes_sent, avg_duration_seconds
            )
            total += per_request * daily_requests
        return total

    def set_client_cost(self, client_id: str, multiplier: float) -> None:
        """Scale a client's prices by multiplier."""
        with self._lock:
            self._client_costs[client_id] = multiplier
            if self.store is not None:
                self.store.set(f"cost:{client_id}", multiplier)

    def get_client_cost(self, client_id: str) -> float:
        """The client's multiplier; 1.0 if none is set."""
        with self._lock:
            return self._client_costs.get(client_id, 1.0)

    def client_costs(self) -> dict[str, float]:
        """All client multipliers."""
        with self._lock:
            return dict(self._client_costs)


@dataclass(frozen=True)
class RetentionPolicy:
    """How long and how many audit entries of an action are kept."""

    action: str = ""
    retention_days: int = 90
    max_entries: int = 10000


class AuditRetention:
    """Trims audit lists in a Redis-like store to their retention policy."""

    def __init__(self, store: Any = None, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock
        self._policies: dict[str, RetentionPolicy] = {"default": RetentionPolicy()}
        self._lock = threading.RLock()

    def set_retention_policy(self, action: str, retention_days: int, max_entries: int) -> None:
        """Set the policy for an action."""
        with self._lock:
            self._policies[action] = RetentionPolicy(action, retention_days, max_entries)

    def get_retention_policy(self, action: str) -> RetentionPolicy:
        """The action's policy, or the default one."""
        with self._lock:
            return self._policies.get(action, self._policies["default"])

    def policies(self) -> dict[str, RetentionPolicy]:
        """All policies, keyed by action."""
        with self._lock:
            return dict(self._policies)

    def cleanup(self) -> int:
        """Apply the policies to every audit key; return how many keys were seen.

        The action of a key is everything after "audit:". Failures of the
        individual trim commands are ignored, as one key must not stop the rest.
        """
        if self.store is None:
            return 0
        keys = [_text(key) for key in self.store.keys(_AUDIT_PREFIX + "*")]
        for key in keys:
            policy = self.get_retention_policy(key[len(_AUDIT_PREFIX):])
            with contextlib.suppress(Exception):
                self.store.ltrim(key, -policy.max_entries, -1)
            cutoff = int(self._clock() - policy.retention_days * _DAY_SECONDS)
            with contextlib.suppress(Exception):
                self.store.zremrangebyscore(key, "0", str(cutoff))
        return len(keys)