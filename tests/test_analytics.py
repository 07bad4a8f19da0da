import fnmatch
import json
from datetime import datetime, timedelta, timezone

import pytest

from meshgate.analytics import TrafficAnalytics


class FakeStore:
    def __init__(self):
        self.strings = {}
        self.hashes = {}
        self.zsets = {}

    def _all_keys(self):
        return list(self.strings) + list(self.hashes) + list(self.zsets)

    def get(self, name):
        return self.strings.get(name)

    def set(self, name, value):
        self.strings[name] = str(value)

    def incr(self, name, amount=1):
        return self.incrby(name, amount)

    def incrby(self, name, amount=1):
        value = int(self.strings.get(name, "0")) + amount
        self.strings[name] = str(value)
        return value

    def hset(self, name, key=None, value=None, mapping=None):
        target = self.hashes.setdefault(name, {})
        if mapping:
            target.update({k: str(v) for k, v in mapping.items()})
        if key is not None:
            target[key] = str(value)

    def hincrby(self, name, key, amount=1):
        target = self.hashes.setdefault(name, {})
        target[key] = str(int(target.get(key, "0")) + amount)
        return int(target[key])

    def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    def zadd(self, name, member):
        self.zsets.setdefault(name, set()).add(member)

    def zcard(self, name):
        return len(self.zsets.get(name, set()))

    def keys(self, pattern):
        return [k for k in self._all_keys() if fnmatch.fnmatchcase(k, pattern)]

    def scan_iter(self, match=None, count=None):
        yield from self.keys(match or "*")


NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make():
    store = FakeStore()
    return store, TrafficAnalytics(store, clock=lambda: NOW)


def test_record_and_country_stats():
    store, analytics = make()
    analytics.record_request("DE", 100, 40, 12)
    analytics.record_request("DE", 30, 5, 8)
    stats = analytics.get_country_stats("DE")
    assert stats.country == "DE"
    assert stats.total_requests == 2
    assert stats.bytes_sent == sum((100, 30))
    assert stats.bytes_received == sum((40, 5))
    assert store.hashes["analytics:requests:2024-05-01"]["timestamp"] == str(int(NOW.timestamp()))


def test_country_stats_latency_and_nodes():
    store, analytics = make()
    store.hset("analytics:country:FR", mapping={"requests": 3, "avg_latency": "12.5"})
    store.zadd("nodes:FR", "n1")
    store.zadd("nodes:FR", "n2")
    stats = analytics.get_country_stats("FR")
    assert stats.avg_latency == 12.5
    assert stats.active_nodes == 2
    assert stats.total_requests == 3


def test_unknown_country_is_empty():
    _, analytics = make()
    stats = analytics.get_country_stats("ZZ")
    assert (stats.total_requests, stats.bytes_sent, stats.active_nodes) == (0, 0, 0)


def test_summary_totals():
    store, analytics = make()
    analytics.record_request("US", 10, 20)
    analytics.record_request("GB", 1, 2)
    store.hset("analytics:country:JP", mapping={"bytes_sent": 5})
    store.set("node_meta:a", "{}")
    store.set("node_meta:b", "{}")

    summary = analytics.get_summary(NOW - timedelta(hours=1), NOW + timedelta(hours=1))
    assert summary.total_requests == 2
    assert summary.total_bytes_sent == sum((10, 1))
    assert summary.total_bytes_recv == sum((20, 2))
    assert summary.active_nodes == 2
    assert sorted(c.country for c in summary.top_countries) == ["GB", "US"]
    assert len(summary.requests_over_time) == 1
    assert summary.requests_over_time[0].value == 2
    assert summary.requests_over_time[0].timestamp == NOW


def test_time_series_outside_range_excluded():
    _, analytics = make()
    analytics.record_request("US", 1, 1)
    summary = analytics.get_summary(NOW + timedelta(hours=1), NOW + timedelta(hours=2))
    assert summary.requests_over_time == []


def test_summary_defaults_to_last_day():
    _, analytics = make()
    analytics.record_request("US", 1, 1)
    summary = analytics.get_summary()
    # the point sits exactly at "now", which the open range excludes
    assert summary.requests_over_time == []
    assert summary.total_requests == 1


def test_node_stats():
    store, analytics = make()
    store.set("bandwidth:n1", json.dumps({"bytes_sent": 7, "bytes_received": 9}))
    assert analytics.get_node_stats("n1") == {
        "node_id": "n1",
        "bytes_sent": 7,
        "bytes_received": 9,
    }


def test_node_stats_missing():
    _, analytics = make()
    with pytest.raises(LookupError):
        analytics.get_node_stats("absent")


def test_node_stats_bad_json_gives_zeros():
    store, analytics = make()
    store.set("bandwidth:n2", "garbage")
    result = analytics.get_node_stats("n2")
    assert (result["bytes_sent"], result["bytes_received"]) == (0, 0)