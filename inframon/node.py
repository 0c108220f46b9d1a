"""This process as a node: identity, sampler and the payload it publishes."""
from __future__ import annotations

import threading

from inframon.monitor import SystemMonitor
from inframon.network.registry import NodeIdentity
from inframon.snapshot import encode_snapshot


class LocalNode:
    """Holds the (renamable) identity of this process next to its monitor.

    The id never changes; ``rename`` swaps in a new identity with the same id.
    """

    def __init__(self, identity: NodeIdentity, monitor: SystemMonitor):
        self._identity = identity
        self.monitor = monitor
        self._lock = threading.Lock()

    @property
    def identity(self) -> NodeIdentity:
        with self._lock:
            return self._identity

    def rename(self, new_name: str) -> NodeIdentity:
        with self._lock:
            self._identity = self._identity.rename(new_name)
            return self._identity

    def build_payload(self) -> dict:
        """Sample once and return the registration body for this tick."""
        snapshot = self.monitor.sample()
        return self.identity.to_payload(encode_snapshot(snapshot))
