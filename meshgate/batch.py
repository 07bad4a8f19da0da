"""Batched operations, node health scoring and per-key request priority."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

BatchHandler = Callable[[list[dict[str, Any]]], list[dict[str, Any]]]


@dataclass
class BatchResponse:
    """Per-operation results and the errors met along the way."""

    results: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class BatchProcessor:
    """Runs a list of typed operations through registered handlers."""

    def __init__(
        self,
        max_batch_size: int,
        timeout: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_batch_size = max_batch_size
        self.timeout = timeout
        self._clock = clock
        self._handlers: dict[str, BatchHandler] = {}
        self._lock = threading.RLock()

    def register_handler(self, operation: str, handler: BatchHandler) -> None:
        """Handle operations whose "type" is operation with handler.

        The handler gets a one-element list and returns a list whose first
        element is the result; it raises to report a failure.
        """
        with self._lock:
            self._handlers[operation] = handler

    def process(self, operations: Iterable[dict[str, Any]]) -> BatchResponse:
        """Run each operation in order.

        Raises ValueError if there are more operations than the maximum and
        TimeoutError if the batch runs past its timeout.
        """
        operations = list(operations)
        if len(operations) > self.max_batch_size:
            raise ValueError(f"batch size exceeds maximum of {self.max_batch_size}")

        deadline = self._clock() + self.timeout
        response = BatchResponse()

        for op in operations:
            if self._clock() >= deadline:
                raise TimeoutError("batch processing timed out")

            op_type = op.get("type")
            if not isinstance(op_type, str):
                response.errors.append("operation type missing")
                response.results.append({"error": "type required"})
                continue

            with self._lock:
                handler = self._handlers.get(op_type)
            if handler is None:
                response.errors.append(f"unknown operation: {op_type}")
                response.results.append({"error": "unknown type"})
                continue

            try:
                result = handler([op])
            except Exception as exc:  # a failing handler is reported, not fatal
                response.errors.append(str(exc))
                response.results.append({"error": str(exc)})
                continue
            if result:
                response.results.append(result[0])

        return response


@dataclass(frozen=True)
class HealthWeights:
    """Percentage weights of each component of a node's health score."""

    latency_weight: float = 30
    load_weight: float = 20
    success_rate_weight: float = 30
    reputation_weight: float = 15
    uptime_weight: float = 5


@dataclass(frozen=True)
class HealthScore:
    """A node's weighted health score and its components, each 0..100."""

    node_id: str
    total_score: float
    latency_score: float
    load_score: float
    success_score: float
    reputation: float
    uptime_score: float
    last_update: datetime


def _latency_score(latency_ms: float) -> float:
    if latency_ms <= 50:
        return 100.0
    if latency_ms >= 500:
        return 0.0
    return 100 - ((latency_ms - 50) * 100 / 450)


def _load_score(load: float) -> float:
    if load <= 10:
        return 100.0
    if load >= 100:
        return 0.0
    return 100 - (load * 100 / 90)


def _uptime_score(uptime_hours: float) -> float:
    if uptime_hours >= 720:
        return 100.0
    return (uptime_hours / 720) * 100


class NodeHealthScore:
    """Scores nodes from latency, load, success rate, reputation and uptime."""

    def __init__(self, weights: HealthWeights | None = None) -> None:
        if weights is None or weights.latency_weight == 0:
            weights = HealthWeights()
        self.weights = weights
        self._scores: dict[str, HealthScore] = {}
        self._lock = threading.RLock()

    def calculate_score(
        self,
        node_id: str,
        latency_ms: float,
        load: float,
        success_rate: float,
        reputation: float,
        uptime_hours: float,
    ) -> float:
        """Compute, remember and return the node's total score."""
        latency = _latency_score(latency_ms)
        load_part = _load_score(load)
        success = success_rate * 100
        uptime = _uptime_score(uptime_hours)
        w = self.weights

        total = (
            latency * w.latency_weight / 100
            + load_part * w.load_weight / 100
            + success * w.success_rate_weight / 100
            + reputation * w.reputation_weight / 100
            + uptime * w.uptime_weight / 100
        )

        with self._lock:
            self._scores[node_id] = HealthScore(
                node_id=node_id,
                total_score=total,
                latency_score=latency,
                load_score=load_part,
                success_score=success,
                reputation=reputation,
                uptime_score=uptime,
                last_update=datetime.now(timezone.utc),
            )
        return total

    def get_score(self, node_id: str) -> HealthScore | None:
        """The node's last score, if it has one."""
        with self._lock:
            return self._scores.get(node_id)

    def get_all_scores(self) -> list[HealthScore]:
        """Every node's last score."""
        with self._lock:
            return list(self._scores.values())

    def get_top_nodes(self, count: int) -> list[str]:
        """Ids of up to count nodes, best score first."""
        ranked = sorted(self.get_all_scores(), key=lambda s: s.total_score, reverse=True)
        return [score.node_id for score in ranked[: max(count, 0)]]


def _bearer_credential(authorization: str) -> str:
    parts = authorization.split(None, 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return ""


class KeyPriority:
    """Request priorities assigned to API keys."""

    def __init__(self, store: Any = None) -> None:
        self.store = store
        self._priorities: dict[str, int] = {}
        self._lock = threading.RLock()

    def set_priority(self, api_key: str, priority: int) -> None:
        """Give a key a priority, also saving it in the store if there is one."""
        with self._lock:
            self._priorities[api_key] = priority
            if self.store is not None:
                self.store.set(f"key:priority:{api_key}", priority)

    def get_priority(self, api_key: str) -> int:
        """The key's priority; 0 if it has none."""
        with self._lock:
            return self._priorities.get(api_key, 0)

    def get_weighted_priority(self, api_key: str, base_weight: float) -> float:
        """base_weight scaled by the key's priority plus one."""
        return base_weight * (self.get_priority(api_key) + 1)

    def request_priority(self, authorization: str) -> int | None:
        """Priority for a request's Authorization header; None if it has none."""
        if not authorization:
            return None
        credential = _bearer_credential(authorization) or authorization
        return self.get_priority(credential)