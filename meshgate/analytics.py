"""Traffic analytics kept as counters in a Redis-like store."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

_COUNTRY_PREFIX = "analytics:country:"
_SERIES_PREFIX = "analytics:requests:"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_LEADING_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _int(value: Any) -> int:
    if value is None:
        return 0
    match = _LEADING_INT.match(_text(value))
    return int(match.group(1)) if match else 0


def _float(value: Any) -> float:
    if value is None:
        return 0.0
    match = _LEADING_FLOAT.match(_text(value))
    return float(match.group(1)) if match else 0.0


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


@dataclass
class CountryStats:
    """Traffic totals for one country."""

    country: str
    total_requests: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    avg_latency: float = 0.0
    active_nodes: int = 0


@dataclass(frozen=True)
class TimeSeriesPoint:
    timestamp: datetime
    value: int


@dataclass
class AnalyticsSummary:
    """Overall traffic totals with per-country and per-day detail."""

    total_requests: int = 0
    total_bytes_sent: int = 0
    total_bytes_recv: int = 0
    active_nodes: int = 0
    top_countries: list[CountryStats] = field(default_factory=list)
    requests_over_time: list[TimeSeriesPoint] = field(default_factory=list)


class TrafficAnalytics:
    """Records and summarises proxied traffic."""

    def __init__(self, store: Any, clock: Callable[[], datetime] = _local_now) -> None:
        self.store = store
        self._clock = clock

    def get_summary(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> AnalyticsSummary:
        """Totals, countries with traffic and request counts between start and end.

        The range defaults to the last 24 hours.
        """
        if end is None:
            end = self._clock()
        if start is None:
            start = end - timedelta(hours=24)

        summary = AnalyticsSummary(
            total_requests=_int(self.store.get("analytics:total_requests")),
            total_bytes_sent=_int(self.store.get("analytics:total_bytes_sent")),
            total_bytes_recv=_int(self.store.get("analytics:total_bytes_recv")),
            active_nodes=len(self.store.keys("node_meta:*")),
        )
        for key in self.store.keys(_COUNTRY_PREFIX + "*"):
            stats = self.get_country_stats(_text(key)[len(_COUNTRY_PREFIX):])
            if stats.total_requests > 0:
                summary.top_countries.append(stats)
        summary.requests_over_time = self._time_series(_SERIES_PREFIX, start, end)
        return summary

    def get_country_stats(self, country: str) -> CountryStats:
        """Totals recorded for a country and its number of active nodes."""
        data = {
            _text(k): v for k, v in self.store.hgetall(_COUNTRY_PREFIX + country).items()
        }
        return CountryStats(
            country=country,
            total_requests=_int(data.get("requests")),
            bytes_sent=_int(data.get("bytes_sent")),
            bytes_received=_int(data.get("bytes_recv")),
            avg_latency=_float(data.get("avg_latency")),
            active_nodes=int(self.store.zcard(f"nodes:{country}")),
        )

    def _time_series(
        self, prefix: str, start: datetime, end: datetime
    ) -> list[TimeSeriesPoint]:
        start, end = _aware(start), _aware(end)
        points = []
        for key in self.store.scan_iter(match=prefix + "*", count=100):
            data = {_text(k): v for k, v in self.store.hgetall(_text(key)).items()}
            if "timestamp" not in data:
                continue
            point = TimeSeriesPoint(
                timestamp=datetime.fromtimestamp(_int(data["timestamp"]), timezone.utc),
                value=_int(data.get("value")),
            )
            if start < point.timestamp < end:
                points.append(point)
        return points

    def get_node_stats(self, node_id: str) -> dict[str, Any]:
        """Bandwidth counters of a node; LookupError if none are stored."""
        raw = self.store.get(f"bandwidth:{node_id}")
        if raw is None:
            raise LookupError("no data for node")
        try:
            data = json.loads(_text(raw))
        except json.JSONDecodeError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return {
            "node_id": node_id,
            "bytes_sent": _int(data.get("bytes_sent")),
            "bytes_received": _int(data.get("bytes_received")),
        }

    def record_request(
        self, country: str, bytes_sent: int, bytes_received: int, latency_ms: int = 0
    ) -> None:
        """Add one request to the global, per-country and per-day counters."""
        self.store.incr("analytics:total_requests")
        self.store.incrby("analytics:total_bytes_sent", bytes_sent)
        self.store.incrby("analytics:total_bytes_recv", bytes_received)

        country_key = _COUNTRY_PREFIX + country
        self.store.hincrby(country_key, "requests", 1)
        self.store.hincrby(country_key, "bytes_sent", bytes_sent)
        self.store.hincrby(country_key, "bytes_recv", bytes_received)

        now = self._clock()
        series_key = _SERIES_PREFIX + now.strftime("%Y-%m-%d")
        self.store.hset(series_key, "timestamp", str(int(now.timestamp())))
        self.store.hincrby(series_key, "value", 1)