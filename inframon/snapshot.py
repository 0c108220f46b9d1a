"""Versioned snapshot schema and its wire codec.

A snapshot is everything one node knows about itself at a sampling tick:
point-in-time values plus the bounded history series. On the wire it
travels as ``compressedData``::

    base64( zlib( json({"v": 1, "data": {<camelCase fields>}}) ) )

``decode_snapshot`` is strict: a blob with a different version, a missing
field or an unknown field is rejected with ``MalformedSnapshot``.
"""
from __future__ import annotations

import base64
import binascii
import json
import zlib
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List

from inframon.errors import MalformedSnapshot

SNAPSHOT_VERSION = 1
MAX_SNAPSHOT_BYTES = 16 * 1024 * 1024

NESTED_KEYS = {
    "network_traffic": ("rx", "tx"),
    "storage_info": ("total", "used", "available"),
    "device_capabilities": ("model", "chip", "memory", "flops"),
}
FLOPS_KEYS = ("fp32", "fp16", "int8")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


def empty_capabilities() -> Dict[str, Any]:
    return {"model": "Unknown", "chip": "Unknown", "memory": 0,
            "flops": {"fp32": 0.0, "fp16": 0.0, "int8": 0.0}}


@dataclass(frozen=True)
class Snapshot:
    cpu_usage: float = 0.0
    gpu_usage: float = 0.0
    memory_usage: float = 0.0
    power_usage: float = 0.0
    network_traffic: Dict[str, float] = field(default_factory=lambda: {"rx": 0.0, "tx": 0.0})
    local_ip: str = "Unknown"
    cloudflared_running: bool = False
    time_points: List[str] = field(default_factory=list)
    cpu_history: List[float] = field(default_factory=list)
    gpu_history: List[float] = field(default_factory=list)
    memory_history: List[float] = field(default_factory=list)
    power_history: List[float] = field(default_factory=list)
    network_rx_history: List[float] = field(default_factory=list)
    network_tx_history: List[float] = field(default_factory=list)
    total_memory: float = 0.0
    used_memory: float = 0.0
    cpu_core_count: int = 0
    gpu_core_count: int = 0
    system_name: str = "Unknown"
    uptime: str = ""
    cpu_model: str = "Unknown"
    storage_info: Dict[str, float] = field(default_factory=lambda: {"total": 0, "used": 0, "available": 0})
    device_capabilities: Dict[str, Any] = field(default_factory=empty_capabilities)
    logs: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {_camel(k): v for k, v in asdict(self).items()}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Snapshot":
        if not isinstance(data, dict):
            raise MalformedSnapshot("snapshot data must be an object")
        names = {_camel(f.name): f.name for f in fields(cls)}
        unknown = sorted(set(data) - set(names))
        if unknown:
            raise MalformedSnapshot(f"unknown snapshot field(s): {', '.join(unknown)}")
        missing = sorted(set(names) - set(data))
        if missing:
            raise MalformedSnapshot(f"missing snapshot field(s): {', '.join(missing)}")
        for attr, keys in NESTED_KEYS.items():
            value = data[_camel(attr)]
            if not isinstance(value, dict) or any(k not in value for k in keys):
                raise MalformedSnapshot(f"{_camel(attr)} must contain {', '.join(keys)}")
        flops = data["deviceCapabilities"]["flops"]
        if not isinstance(flops, dict) or any(k not in flops for k in FLOPS_KEYS):
            raise MalformedSnapshot("deviceCapabilities.flops must contain fp32, fp16, int8")
        return cls(**{names[k]: v for k, v in data.items()})


def encode_snapshot(snapshot: Snapshot) -> str:
    raw = json.dumps({"v": SNAPSHOT_VERSION, "data": snapshot.to_wire()},
                     separators=(",", ":")).encode()
    return base64.b64encode(zlib.compress(raw, level=6)).decode("ascii")


def _inflate(data: bytes) -> bytes:
    """zlib decompression capped at ``MAX_SNAPSHOT_BYTES`` of output."""
    inflater = zlib.decompressobj()
    raw = inflater.decompress(data, MAX_SNAPSHOT_BYTES + 1)
    if len(raw) > MAX_SNAPSHOT_BYTES:
        raise MalformedSnapshot(f"snapshot exceeds {MAX_SNAPSHOT_BYTES} bytes once decompressed")
    if not inflater.eof:
        raise MalformedSnapshot("truncated compressed data")
    return raw


def decode_snapshot(blob: Any) -> Snapshot:
    if not blob or not isinstance(blob, str):
        raise MalformedSnapshot("empty compressed data")
    try:
        raw = _inflate(base64.b64decode(blob, validate=True))
        envelope = json.loads(raw)
    except (binascii.Error, zlib.error, ValueError) as e:
        raise MalformedSnapshot(f"undecodable compressed data: {e}") from e
    if not isinstance(envelope, dict) or envelope.get("v") != SNAPSHOT_VERSION:
        raise MalformedSnapshot(f"unsupported snapshot version: {envelope.get('v') if isinstance(envelope, dict) else None!r}")
    return Snapshot.from_wire(envelope.get("data"))


def validate_blob(blob: Any) -> None:
    decode_snapshot(blob)

__all__ = ["SNAPSHOT_VERSION", "MAX_SNAPSHOT_BYTES", "Snapshot", "encode_snapshot", "decode_snapshot", "validate_blob", "empty_capabilities"]
