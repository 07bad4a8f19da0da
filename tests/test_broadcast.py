import json

import pytest

from meshgate.broadcast import (
    ConfigNotifier,
    NodeNotConnected,
    PeerBroadcaster,
    ResponseCompressor,
)


class FakeStore:
    def __init__(self):
        self.published = []

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


def test_broadcast_delivers_payload_to_subscribers():
    pb = PeerBroadcaster()
    first = pb.subscribe("n1")
    second = pb.subscribe("n2")
    pb.broadcast("update", "hello")
    assert first.get_nowait() == b"hello"
    assert second.get_nowait() == b"hello"


def test_broadcast_records_history():
    pb = PeerBroadcaster()
    message = pb.broadcast("update", "hello")
    history = pb.get_history(0)
    assert history == [message]
    assert message.type == "update"
    assert message.target == ""
    assert message.id.startswith("msg-")


def test_send_to_node_delivers_only_to_target():
    pb = PeerBroadcaster()
    target = pb.subscribe("n1")
    other = pb.subscribe("n2")
    message = pb.send_to_node("n1", "cmd", "restart")
    assert message.target == "n1"
    assert target.get_nowait() == b"restart"
    assert other.empty()


def test_send_to_unknown_node_raises_but_keeps_history():
    pb = PeerBroadcaster()
    with pytest.raises(NodeNotConnected) as info:
        pb.send_to_node("ghost", "cmd", "x")
    assert info.value.node_id == "ghost"
    assert [m.target for m in pb.get_history(0)] == ["ghost"]


def test_send_after_unsubscribe_raises():
    pb = PeerBroadcaster()
    pb.subscribe("n1")
    pb.unsubscribe("n1")
    with pytest.raises(NodeNotConnected):
        pb.send_to_node("n1", "cmd", "x")


def test_send_to_full_queue_raises():
    pb = PeerBroadcaster()
    pb.subscribe("n1")
    for i in range(10):
        pb.send_to_node("n1", "cmd", str(i))
    with pytest.raises(NodeNotConnected):
        pb.send_to_node("n1", "cmd", "overflow")


def test_broadcast_drops_when_queue_full():
    pb = PeerBroadcaster()
    subscription = pb.subscribe("n1")
    for i in range(15):
        pb.broadcast("update", str(i))
    assert subscription.qsize() == 10
    assert subscription.get_nowait() == b"0"


def test_history_is_bounded_and_keeps_newest():
    pb = PeerBroadcaster(max_history=3)
    for i in range(5):
        pb.broadcast("update", str(i))
    assert [m.payload for m in pb.get_history(0)] == ["2", "3", "4"]


def test_get_history_limit_returns_oldest_first():
    pb = PeerBroadcaster()
    for i in range(4):
        pb.broadcast("update", str(i))
    assert [m.payload for m in pb.get_history(2)] == ["0", "1"]
    assert len(pb.get_history(99)) == 4


def test_default_max_history():
    pb = PeerBroadcaster(max_history=0)
    for i in range(101):
        pb.broadcast("update", str(i))
    assert pb.max_history == 100
    assert len(pb.get_history(0)) == 100


def test_publishes_to_store_channels():
    store = FakeStore()
    pb = PeerBroadcaster(store=store)
    pb.subscribe("n1")
    pb.broadcast("update", "hello")
    pb.send_to_node("n1", "cmd", "go")
    channels = [channel for channel, _ in store.published]
    assert channels == ["peer:broadcast", "peer:n1:broadcast"]
    sent = json.loads(store.published[1][1])
    assert sent["target"] == "n1"
    assert sent["payload"] == "go"
    assert "target" not in json.loads(store.published[0][1])


def test_config_notifier_reload_reaches_all():
    notifier = ConfigNotifier()
    a = notifier.subscribe("a")
    b = notifier.subscribe("b")
    notifier.notify_config_reload()
    assert a.get_nowait() == "config_reloaded"
    assert b.get_nowait() == "config_reloaded"


def test_config_notifier_unsubscribe_stops_delivery():
    notifier = ConfigNotifier()
    a = notifier.subscribe("a")
    notifier.unsubscribe("a")
    notifier.notify("changed")
    assert a.empty()


def test_config_notifier_queue_is_bounded():
    notifier = ConfigNotifier()
    a = notifier.subscribe("a")
    for i in range(8):
        notifier.notify(str(i))
    assert a.qsize() == 5


def test_compressor_headers():
    assert ResponseCompressor(True, 0).headers() == {"X-Compression": "enabled"}
    assert ResponseCompressor(False, 3).headers() == {}


def test_compressor_default_level():
    assert ResponseCompressor(True, -1).level == 5
    assert ResponseCompressor(True, 9).level == 9