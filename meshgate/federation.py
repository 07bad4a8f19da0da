"""Federation of gateways across regions."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FederationConfig:
    """Federation settings; intervals are in seconds."""

    enabled: bool = False
    regions: list[str] = field(default_factory=list)
    heartbeat_interval: float = 30
    sync_interval: float = 60


@dataclass
class PeerGateway:
    """A gateway in another region."""

    region: str
    address: str = ""
    last_seen: datetime | None = None
    healthy: bool = False


@dataclass(frozen=True)
class FederationStats:
    """Summary of one peer region."""

    region: str
    peer_count: int
    node_count: int
    last_sync: datetime | None
    status: str


@dataclass
class FederationMessage:
    """A message exchanged between peer gateways."""

    type: str
    region: str = ""
    nodes: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utcnow)
    data: Any = None


class FederationService:
    """Tracks peer gateways and the nodes each region offers."""

    def __init__(
        self,
        config: FederationConfig | None = None,
        matchmaker: Any = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config if config is not None else FederationConfig()
        self.matchmaker = matchmaker
        self._clock = clock
        self._peers: dict[str, PeerGateway] = {}
        self._node_cache: dict[str, list[str]] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def stopped(self) -> bool:
        """Whether stop() has been called."""
        return self._stop.is_set()

    def start(self) -> bool:
        """Start the heartbeat and sync loops; False if federation is disabled."""
        if not self.config.enabled:
            log.info("Federation disabled")
            return False

        log.info("Starting federation service with regions: %s", self.config.regions)
        loops = (
            (self.config.heartbeat_interval, self.check_peer_health),
            (self.config.sync_interval, self.sync_nodes),
        )
        for interval, action in loops:
            thread = threading.Thread(
                target=self._run_every, args=(interval, action), daemon=True
            )
            thread.start()
            self._threads.append(thread)
        return True

    def _run_every(self, interval: float, action: Callable[[], Any]) -> None:
        while not self._stop.wait(interval):
            action()

    def stop(self) -> None:
        """Stop the background loops."""
        self._stop.set()
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=5)
        self._threads.clear()

    def check_peer_health(self) -> list[str]:
        """Mark peers silent for three heartbeats unhealthy; return their regions."""
        limit = timedelta(seconds=self.config.heartbeat_interval * 3)
        now = self._clock()
        stale = []
        with self._lock:
            for region, peer in self._peers.items():
                if peer.last_seen is None or now - peer.last_seen > limit:
                    peer.healthy = False
                    stale.append(region)
                    log.warning("Federation: peer %s marked unhealthy", region)
        return stale

    def sync_nodes(self) -> list[str] | None:
        """Cache the local node list under "local"; None if it could not be read."""
        if self.matchmaker is None:
            log.warning("Federation: no matchmaker to sync nodes from")
            return None
        try:
            nodes = list(self.matchmaker.get_all_nodes())
        except Exception as exc:  # the loop must survive a failing backend
            log.warning("Federation: failed to get nodes: %s", exc)
            return None

        with self._lock:
            self._node_cache["local"] = nodes
        log.info("Federation: synced %d nodes", len(nodes))
        return nodes

    def register_peer(self, region: str, address: str) -> None:
        """Add or replace the healthy peer for region."""
        with self._lock:
            self._peers[region] = PeerGateway(
                region=region, address=address, last_seen=self._clock(), healthy=True
            )
        log.info("Federation: registered peer %s at %s", region, address)

    def get_stats(self) -> list[FederationStats]:
        """One summary per known peer."""
        with self._lock:
            return [
                FederationStats(
                    region=region,
                    peer_count=1,
                    node_count=len(self._node_cache.get(region, ())),
                    last_sync=peer.last_seen,
                    status="healthy" if peer.healthy else "unhealthy",
                )
                for region, peer in self._peers.items()
            ]

    def get_nodes_for_region(self, region: str) -> list[str]:
        """Cached node ids for region; LookupError if none were received."""
        with self._lock:
            nodes = self._node_cache.get(region)
        if nodes is None:
            raise LookupError(f"no nodes found for region: {region}")
        return list(nodes)

    def select_node_by_region(self, preferred_region: str = "") -> Any:
        """Status of the first node in the preferred region, else of any node."""
        if preferred_region:
            try:
                nodes = self.get_nodes_for_region(preferred_region)
            except LookupError:
                nodes = []
            if nodes:
                return self.matchmaker.get_node_status(nodes[0])

        if self.matchmaker is None:
            raise LookupError("no nodes available")
        try:
            nodes = list(self.matchmaker.get_all_nodes())
        except Exception as exc:
            raise LookupError("no nodes available") from exc
        if not nodes:
            raise LookupError("no nodes available")
        return self.matchmaker.get_node_status(nodes[0])

    def handle_message(self, message: FederationMessage) -> None:
        """Apply a heartbeat or node_sync message; ValueError for other types."""
        if message.type == "heartbeat":
            with self._lock:
                peer = self._peers.setdefault(
                    message.region, PeerGateway(region=message.region)
                )
                peer.last_seen = self._clock()
                peer.healthy = True
        elif message.type == "node_sync":
            with self._lock:
                self._node_cache[message.region] = list(message.nodes)
            log.info(
                "Federation: received %d nodes from %s",
                len(message.nodes),
                message.region,
            )
        else:
            raise ValueError(f"unknown message type: {message.type}")