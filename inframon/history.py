"""Bounded per-metric history used by the sampling loop.

One ``HistoryBuffer`` per series; ``MetricHistory`` appends a full sample
(all series at once) under a lock so a concurrent ``copy()`` never sees
series of different lengths.
"""
from __future__ import annotations

import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

SERIES = ("timePoints", "cpuHistory", "gpuHistory", "memoryHistory",
          "powerHistory", "networkRxHistory", "networkTxHistory")


class HistoryBuffer:
    """FIFO ring of at most ``capacity`` samples."""

    def __init__(self, capacity: int = 3600):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: Deque[Any] = deque(maxlen=capacity)

    def append(self, value: Any) -> None:
        self._items.append(value)

    def latest(self, default: Any = None) -> Any:
        return self._items[-1] if self._items else default

    def to_list(self) -> List[Any]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))


class MetricHistory:
    def __init__(self, capacity: int = 3600):
        self.capacity = capacity
        self._lock = threading.Lock()
        self._series: Dict[str, HistoryBuffer] = {name: HistoryBuffer(capacity) for name in SERIES}

    def append(self, time_point: str, cpu: float, gpu: float, memory: float,
               power: float, rx: float, tx: float) -> None:
        values = (time_point, cpu, gpu, memory, power, rx, tx)
        with self._lock:
            for name, value in zip(SERIES, values):
                self._series[name].append(value)

    def latest(self, name: str, default: Optional[Any] = 0) -> Any:
        with self._lock:
            return self._series[name].latest(default)

    def copy(self) -> Dict[str, List[Any]]:
        with self._lock:
            return {name: buf.to_list() for name, buf in self._series.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._series["timePoints"])

__all__ = ["HistoryBuffer", "MetricHistory", "SERIES"]
