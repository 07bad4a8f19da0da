import pytest

from meshgate.cost import AuditRetention, CostConfig, CostEstimator, RetentionPolicy


class FakeStore:
    def __init__(self):
        self.values = {}
        self.lists = {}
        self.zrem_calls = []

    def set(self, key, value):
        self.values[key] = value

    def keys(self, pattern):
        prefix = pattern.rstrip("*")
        return [k for k in self.lists if k.startswith(prefix)]

    def ltrim(self, key, start, end):
        items = self.lists.get(key, [])
        n = len(items)
        s = start + n if start < 0 else start
        e = end + n if end < 0 else end
        self.lists[key] = items[max(s, 0): e + 1]

    def zremrangebyscore(self, key, low, high):
        self.zrem_calls.append((key, low, high))
        raise RuntimeError("WRONGTYPE")


def test_default_cost_config():
    cfg = CostConfig()
    assert cfg.per_request == 0.001
    assert cfg.per_gb_sent == 0.30
    assert cfg.base_cost == 0.0


def test_bare_request_costs_per_request():
    ce = CostEstimator()
    assert ce.estimate_request("c", 0, 0, 0) == pytest.approx(CostConfig().per_request)


def test_cost_grows_with_traffic_and_duration():
    ce = CostEstimator()
    base = ce.estimate_request("c", 0, 0, 0)
    assert ce.estimate_request("c", 1 << 30, 0, 0) > base
    assert ce.estimate_request("c", 0, 1 << 30, 0) > ce.estimate_request("c", 1 << 30, 0, 0)
    assert ce.estimate_request("c", 0, 0, 60) > base


def test_client_multiplier_scales_cost():
    store = FakeStore()
    ce = CostEstimator(store)
    plain = ce.estimate_request("c", 1000, 2000, 30)
    ce.set_client_cost("c", 2.0)
    assert ce.estimate_request("c", 1000, 2000, 30) == pytest.approx(plain * 2.0)
    assert ce.get_client_cost("c") == 2.0
    assert store.values["cost:c"] == 2.0
    assert ce.client_costs() == {"c": 2.0}


def test_unknown_client_multiplier_is_one():
    assert CostEstimator().get_client_cost("nobody") == 1.0


def test_monthly_is_thirty_days_of_requests():
    ce = CostEstimator()
    single = ce.estimate_request("c", 500, 400, 10)
    monthly = ce.estimate_monthly("c", 7, 400, 500, 10)
    assert monthly == pytest.approx(single * 7 * 30)


def test_monthly_zero_requests_is_zero():
    assert CostEstimator().estimate_monthly("c", 0, 100, 100, 10) == 0


def test_default_retention_policy():
    ar = AuditRetention()
    policy = ar.get_retention_policy("anything")
    assert policy.retention_days == 90
    assert policy.max_entries == 10000


def test_set_retention_policy():
    ar = AuditRetention()
    ar.set_retention_policy("POST_x", 7, 50)
    assert ar.get_retention_policy("POST_x") == RetentionPolicy("POST_x", 7, 50)
    assert set(ar.policies()) == {"default", "POST_x"}


def test_cleanup_without_store():
    assert AuditRetention().cleanup() == 0


def test_cleanup_trims_lists_to_max_entries():
    store = FakeStore()
    store.lists["audit:2024-01-01:POST_x"] = ["a", "b", "c", "d", "e"]
    store.lists["audit:2024-01-01:DELETE_y"] = ["a", "b"]
    store.lists["other"] = ["z"]
    now = 1_700_000_000.0
    ar = AuditRetention(store, clock=lambda: now)
    ar.set_retention_policy("2024-01-01:POST_x", 30, 2)

    assert ar.cleanup() == 2
    assert store.lists["audit:2024-01-01:POST_x"] == ["d", "e"]
    assert store.lists["audit:2024-01-01:DELETE_y"] == ["a", "b"]
    assert store.lists["other"] == ["z"]
    for key, low, high in store.zrem_calls:
        assert low == "0"
        assert int(high) < now