"""Messages pushed to connected peer nodes and configuration subscribers."""

from __future__ import annotations

import json
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import islice
from typing import Any

DEFAULT_MAX_HISTORY = 100
PEER_QUEUE_SIZE = 10
CONFIG_QUEUE_SIZE = 5
CONFIG_RELOADED = "config_reloaded"
DEFAULT_COMPRESSION_LEVEL = 5


@dataclass(frozen=True)
class BroadcastMessage:
    """A message sent to every node, or to one node when target is set."""

    id: str
    type: str
    payload: str
    sent_at: datetime
    target: str = ""

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; an empty target is left out."""
        data: dict[str, Any] = {"id": self.id, "type": self.type, "payload": self.payload}
        if self.target:
            data["target"] = self.target
        data["sent_at"] = self.sent_at.isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


class NodeNotConnected(Exception):
    """Raised when a message cannot be handed to a node's queue."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"node {node_id} not connected")
        self.node_id = node_id


def _offer(target: queue.Queue, item: Any) -> bool:
    try:
        target.put_nowait(item)
    except queue.Full:
        return False
    return True


def _new_message(msg_type: str, payload: str, target: str = "") -> BroadcastMessage:
    return BroadcastMessage(
        id=f"msg-{time.time_ns()}",
        type=msg_type,
        payload=payload,
        sent_at=datetime.now(timezone.utc),
        target=target,
    )


class PeerBroadcaster:
    """Delivers payloads to subscribed nodes and keeps a bounded history.

    Messages are also published to the store (any object with a Redis-style
    publish method) when one is given. Delivery never blocks: a node whose
    queue is full misses the payload.
    """

    def __init__(self, store: Any = None, max_history: int = DEFAULT_MAX_HISTORY) -> None:
        if max_history <= 0:
            max_history = DEFAULT_MAX_HISTORY
        self.store = store
        self.max_history = max_history
        self._subs: dict[str, queue.Queue] = {}
        self._history: deque[BroadcastMessage] = deque(maxlen=max_history)
        self._lock = threading.RLock()

    def subscribe(self, node_id: str) -> queue.Queue:
        """A fresh queue of payload bytes for node_id, replacing any earlier one."""
        subscription: queue.Queue = queue.Queue(maxsize=PEER_QUEUE_SIZE)
        with self._lock:
            self._subs[node_id] = subscription
        return subscription

    def unsubscribe(self, node_id: str) -> None:
        """Stop delivering to node_id."""
        with self._lock:
            self._subs.pop(node_id, None)

    def _record(self, message: BroadcastMessage, channel: str) -> None:
        with self._lock:
            self._history.append(message)
        if self.store is not None:
            self.store.publish(channel, message.to_json())

    def broadcast(self, msg_type: str, payload: str) -> BroadcastMessage:
        """Send payload to every subscribed node."""
        message = _new_message(msg_type, payload)
        self._record(message, "peer:broadcast")
        data = payload.encode("utf-8")
        with self._lock:
            for subscription in self._subs.values():
                _offer(subscription, data)
        return message

    def send_to_node(self, node_id: str, msg_type: str, payload: str) -> BroadcastMessage:
        """Send payload to one node; NodeNotConnected if it could not be queued."""
        message = _new_message(msg_type, payload, target=node_id)
        self._record(message, f"peer:{node_id}:broadcast")
        with self._lock:
            subscription = self._subs.get(node_id)
            if subscription is not None and _offer(subscription, payload.encode("utf-8")):
                return message
        raise NodeNotConnected(node_id)

    def get_history(self, limit: int = 0) -> list[BroadcastMessage]:
        """The oldest limit messages kept; all of them when limit is not positive."""
        with self._lock:
            if limit <= 0 or limit > len(self._history):
                return list(self._history)
            return list(islice(self._history, limit))


class ConfigNotifier:
    """Tells subscribed clients about configuration changes."""

    def __init__(self) -> None:
        self._channels: dict[str, queue.Queue] = {}
        self._lock = threading.RLock()

    def subscribe(self, client_id: str) -> queue.Queue:
        """A fresh queue of notification strings for client_id."""
        channel: queue.Queue = queue.Queue(maxsize=CONFIG_QUEUE_SIZE)
        with self._lock:
            self._channels[client_id] = channel
        return channel

    def unsubscribe(self, client_id: str) -> None:
        """Stop notifying client_id."""
        with self._lock:
            self._channels.pop(client_id, None)

    def notify(self, message: str) -> None:
        """Queue message for every subscriber whose queue has room."""
        with self._lock:
            for channel in self._channels.values():
                _offer(channel, message)

    def notify_config_reload(self) -> None:
        """Announce that the configuration was reloaded."""
        self.notify(CONFIG_RELOADED)


class ResponseCompressor:
    """Marks responses as compressed when enabled."""

    def __init__(self, enabled: bool, level: int = DEFAULT_COMPRESSION_LEVEL) -> None:
        self.enabled = enabled
        self.level = level if level > 0 else DEFAULT_COMPRESSION_LEVEL

    def headers(self) -> dict[str, str]:
        """Headers to add to a response."""
        if not self.enabled:
            return {}
        return {"X-Compression": "enabled"}