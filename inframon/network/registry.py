"""Thread-safe node registry held by the master.

Maps node id to the last known ``NodeRecord`` of every node. Records are
immutable: each mutation builds a new record and swaps it into the map
under a reentrant lock, so concurrent readers (Flask threads, the reaper,
the master's own sampling tick) never observe a half-updated node.

Staleness policy:
  - ``last_seen`` moves only when a snapshot is registered; a record is
    visible to ``list_active``/``get`` while ``now - last_seen < active_window``.
  - ``last_heartbeat`` moves on registration and on ``update_heartbeat``;
    the reaper marks a record DISCONNECTED once its heartbeat is older than
    ``heartbeat_timeout`` and deletes it once older than ``reap_after``.
    The master's own record is never reaped.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from inframon.errors import MalformedRegistration, NotFound
from inframon.logger import LoggerAdapter
from inframon.metrics import REGISTRATIONS, REGISTRY_EVICTIONS, publish_registry_summary

log = LoggerAdapter("registry")

ACTIVE_WINDOW = 60.0
HEARTBEAT_TIMEOUT = 25.0
REAP_AFTER = 300.0


class NodeStatus(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"


@dataclass(frozen=True)
class NodeIdentity:
    id: str
    name: str
    os: str
    ip: str
    port: int
    is_master: bool = False

    @classmethod
    def local(cls, port: int, is_master: bool = False) -> "NodeIdentity":
        from inframon import system_info
        return cls(
            id=str(uuid.uuid4()),
            name=system_info.get_system_name(),
            os=system_info.get_os(),
            ip=system_info.get_local_ip(),
            port=port,
            is_master=is_master,
        )

    def rename(self, new_name: str) -> "NodeIdentity":
        return replace(self, name=new_name)

    def to_payload(self, compressed_data: Optional[str]) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "os": self.os,
            "ip": self.ip,
            "port": self.port,
            "isMaster": self.is_master,
            "compressedData": compressed_data,
        }


@dataclass(frozen=True)
class NodeRecord:
    id: str
    name: str
    os: str
    ip: str
    port: int
    is_master: bool
    compressed_data: Optional[str]
    last_seen: float = 0.0
    last_heartbeat: float = 0.0
    status: NodeStatus = NodeStatus.CONNECTING

    @classmethod
    def from_identity(cls, identity: NodeIdentity, compressed_data: Optional[str]) -> "NodeRecord":
        return cls(id=identity.id, name=identity.name, os=identity.os, ip=identity.ip,
                   port=identity.port, is_master=identity.is_master,
                   compressed_data=compressed_data)

    @classmethod
    def from_payload(cls, payload: dict) -> "NodeRecord":
        """Build a record from a registration body (fields already validated)."""
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            os=str(payload["os"]),
            ip=str(payload["ip"]),
            port=int(payload["port"]),
            is_master=bool(payload.get("isMaster", False)),
            compressed_data=payload.get("compressedData"),
        )

    def age(self, now: float) -> float:
        return now - self.last_seen

    def heartbeat_age(self, now: float) -> float:
        return now - max(self.last_heartbeat, self.last_seen)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "os": self.os,
            "ip": self.ip,
            "port": self.port,
            "lastSeen": datetime.fromtimestamp(self.last_seen, tz=timezone.utc).isoformat(),
            "isMaster": self.is_master,
            "status": self.status.value,
            "compressedData": self.compressed_data,
        }


class NodeRegistry:
    """In-memory map ``node id -> NodeRecord``, owned by the master process.

    Parameters
    ----------
    active_window : float
        Seconds after the last registered snapshot during which a record
        is returned by reads.
    heartbeat_timeout : float
        Heartbeat age after which the reaper marks a record DISCONNECTED.
    reap_after : float
        Heartbeat age after which the reaper deletes a record.
    clock : callable
        Returns the current epoch time; injected by tests.
    """

    def __init__(
        self,
        active_window: float = ACTIVE_WINDOW,
        heartbeat_timeout: float = HEARTBEAT_TIMEOUT,
        reap_after: float = REAP_AFTER,
        clock: Callable[[], float] = time.time,
    ):
        self.active_window = active_window
        self.heartbeat_timeout = heartbeat_timeout
        self.reap_after = reap_after
        self.clock = clock
        self._lock = threading.RLock()
        self._nodes: Dict[str, NodeRecord] = {}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(self, record: NodeRecord, now: Optional[float] = None) -> NodeRecord:
        """Insert or refresh a node; return the record as stored.

        A non-master submission whose IP matches an existing non-master
        record refreshes that record under its original id, so a restarted
        slave (new process id, same host) does not fork a ghost entry.
        """
        if not record.compressed_data:
            REGISTRATIONS.labels("rejected").inc()
            raise MalformedRegistration("No compressed data received")
        now = self.clock() if now is None else now
        with self._lock:
            if record.is_master:
                other = next((n for n in self._nodes.values()
                              if n.is_master and n.id != record.id), None)
                if other is not None:
                    REGISTRATIONS.labels("rejected").inc()
                    raise MalformedRegistration(f"master already registered as {other.id}")
            existing = self._nodes.get(record.id)
            if existing is None and not record.is_master:
                existing = next((n for n in self._nodes.values()
                                 if n.ip == record.ip and not n.is_master), None)
            if existing is None:
                stored = replace(record, last_seen=now, last_heartbeat=now,
                                 status=NodeStatus.CONNECTED if record.is_master else NodeStatus.CONNECTING)
                self._nodes[stored.id] = stored
                REGISTRATIONS.labels("inserted").inc()
                log.info("Nouveau nœud enregistré : %s (%s, %s)", stored.name, stored.ip, stored.id)
            else:
                stored = replace(existing, name=record.name, os=record.os, ip=record.ip,
                                 port=record.port, compressed_data=record.compressed_data,
                                 last_seen=now, last_heartbeat=now, status=NodeStatus.CONNECTED)
                self._nodes[stored.id] = stored
                if existing.id != record.id:
                    log.info("Nœud %s ré-enregistré depuis %s (ancien id conservé : %s)",
                             record.id, record.ip, existing.id)
                if not stored.is_master:
                    for dup in [n.id for n in self._nodes.values()
                                if n.ip == stored.ip and not n.is_master and n.id != stored.id]:
                        del self._nodes[dup]
                REGISTRATIONS.labels("updated").inc()
            self._publish_summary()
            return stored

    def update_heartbeat(self, node_id: str, now: Optional[float] = None) -> NodeRecord:
        now = self.clock() if now is None else now
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFound(f"Node {node_id} not found")
            stored = replace(node, last_heartbeat=now, status=NodeStatus.CONNECTED)
            self._nodes[node_id] = stored
            return stored

    def remove(self, node_id: str) -> NodeRecord:
        with self._lock:
            node = self._nodes.pop(node_id, None)
            if node is None:
                raise NotFound(f"Node {node_id} not found")
            REGISTRY_EVICTIONS.labels("removed").inc()
            self._publish_summary()
        log.info("Nœud retiré : %s (%s)", node.name, node_id)
        return node

    def rename_node(self, node_id: str, new_name: str,
                    forward: Callable[[NodeRecord, str], None]) -> NodeRecord:
        """Rename a node on the host itself, then in the registry.

        ``forward`` performs the remote call and raises on failure; the
        registry is untouched unless it returns. The lock is not held
        while forwarding.
        """
        with self._lock:
            node = self._nodes.get(node_id)
        if node is None:
            raise NotFound(f"Node {node_id} not found")
        forward(node, new_name)
        with self._lock:
            current = self._nodes.get(node_id)
            if current is None:
                raise NotFound(f"Node {node_id} removed during rename")
            stored = replace(current, name=new_name)
            self._nodes[node_id] = stored
        log.info("Nœud %s renommé en %s", node_id, new_name)
        return stored

    def reap(self, now: Optional[float] = None) -> List[str]:
        """Mark silent nodes DISCONNECTED and delete long-silent ones.

        Returns the ids deleted in this pass.
        """
        now = self.clock() if now is None else now
        removed: List[str] = []
        with self._lock:
            for node in list(self._nodes.values()):
                if node.is_master:
                    continue
                age = node.heartbeat_age(now)
                if age >= self.reap_after:
                    del self._nodes[node.id]
                    removed.append(node.id)
                    REGISTRY_EVICTIONS.labels("reaped").inc()
                elif age >= self.heartbeat_timeout and node.status is not NodeStatus.DISCONNECTED:
                    self._nodes[node.id] = replace(node, status=NodeStatus.DISCONNECTED)
                    log.warning("Nœud %s (%s) sans heartbeat depuis %.0fs", node.name, node.id, age)
            self._publish_summary()
        for node_id in removed:
            log.info("Nœud %s purgé (inactif)", node_id)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._nodes.clear()
            self._publish_summary()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _is_active(self, node: NodeRecord, now: float) -> bool:
        return node.age(now) < self.active_window

    def list_active(self, now: Optional[float] = None) -> List[NodeRecord]:
        now = self.clock() if now is None else now
        with self._lock:
            nodes = list(self._nodes.values())
        return [n for n in nodes if self._is_active(n, now)]

    def get(self, node_id: str, now: Optional[float] = None) -> NodeRecord:
        now = self.clock() if now is None else now
        with self._lock:
            node = self._nodes.get(node_id)
        if node is None or not self._is_active(node, now):
            raise NotFound("Node not found or inactive")
        return node

    def contains(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._nodes

    def summary(self) -> Dict[str, int]:
        with self._lock:
            counts = {s.value: 0 for s in NodeStatus}
            for node in self._nodes.values():
                counts[node.status.value] += 1
        return counts

    def _publish_summary(self) -> None:
        counts = {s.value: 0 for s in NodeStatus}
        for node in self._nodes.values():
            counts[node.status.value] += 1
        publish_registry_summary(counts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)


class Reaper:
    """Background thread calling ``registry.reap()`` every ``interval`` seconds."""

    def __init__(self, registry: NodeRegistry, interval: float = 5.0):
        self.registry = registry
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.registry.reap()
            except Exception:  # pragma: no cover - la boucle ne doit jamais mourir
                log.exception("Erreur pendant la purge du registre")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="inframon-reaper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None


__all__ = [
    "NodeStatus",
    "NodeIdentity",
    "NodeRecord",
    "NodeRegistry",
    "Reaper",
    "ACTIVE_WINDOW",
    "HEARTBEAT_TIMEOUT",
    "REAP_AFTER",
]
