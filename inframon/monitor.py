# inframon/monitor.py
"""
Sampling loop state: one tick of the metric source into the history.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Optional

from inframon import system_info
from inframon.history import MetricHistory
from inframon.logger import read_recent_logs
from inframon.metrics import SAMPLE_LATENCY
from inframon.snapshot import Snapshot


class SystemMonitor:
    """
    Owns the history buffers of this node and turns every sampling tick
    into an immutable ``Snapshot``.
    """

    def __init__(self, history_length: int = 3600, source=system_info) -> None:
        self.history = MetricHistory(history_length)
        self.source = source
        self._last: Optional[Snapshot] = None
        self._lock = threading.Lock()

    def sample(self) -> Snapshot:
        with SAMPLE_LATENCY.time():
            src = self.source
            cpu = src.get_cpu_usage()
            memory = src.get_memory_usage()
            power = src.get_power_usage()
            network = src.get_network_traffic()
            gpu = src.get_gpu_usage()
            self.history.append(datetime.now().strftime("%H:%M:%S"), cpu, gpu, memory,
                                power, network["rx"], network["tx"])
            series = self.history.copy()
            snap = Snapshot(
                cpu_usage=cpu,
                gpu_usage=gpu,
                memory_usage=memory,
                power_usage=power,
                network_traffic=dict(network),
                local_ip=src.get_local_ip(),
                cloudflared_running=src.is_cloudflared_running(),
                time_points=series["timePoints"],
                cpu_history=series["cpuHistory"],
                gpu_history=series["gpuHistory"],
                memory_history=series["memoryHistory"],
                power_history=series["powerHistory"],
                network_rx_history=series["networkRxHistory"],
                network_tx_history=series["networkTxHistory"],
                total_memory=src.get_total_memory(),
                used_memory=src.get_used_memory(),
                cpu_core_count=src.get_cpu_core_count(),
                gpu_core_count=src.get_gpu_core_count(),
                system_name=src.get_system_name(),
                uptime=src.get_uptime(),
                cpu_model=src.get_cpu_model(),
                storage_info=src.get_storage_info(),
                device_capabilities=src.get_device_capabilities(),
                logs=read_recent_logs(),
            )
        with self._lock:
            self._last = snap
        return snap

    def latest(self) -> Snapshot:
        with self._lock:
            snap = self._last
        return snap if snap is not None else self.sample()

    def __repr__(self) -> str:
        return f"SystemMonitor(samples={len(self.history)}/{self.history.capacity})"
