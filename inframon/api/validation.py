"""Input validation helpers for the registry and node endpoints."""
from __future__ import annotations

from typing import Any, Optional, Tuple

from inframon.errors import MalformedRegistration
from inframon.network.registry import NodeRecord
from inframon.snapshot import validate_blob
from inframon.system_info import is_valid_hostname

REQUIRED_STR = ("id", "name", "os", "ip")


def validate_registration(data: Any) -> NodeRecord:
    """Check a registration body and build the record.

    Raises ``MalformedRegistration`` (or its ``MalformedSnapshot`` subclass)
    on the first problem found; the registry is never touched on failure.
    """
    if not isinstance(data, dict):
        raise MalformedRegistration("Registration body must be a JSON object")
    if not data.get("compressedData"):
        raise MalformedRegistration("No compressed data received")
    for key in REQUIRED_STR:
        value = data.get(key)
        if not isinstance(value, str) or not value:
            raise MalformedRegistration(f"Missing or invalid field: {key}")
    port = data.get("port")
    if isinstance(port, bool):
        raise MalformedRegistration("Missing or invalid field: port")
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise MalformedRegistration("Missing or invalid field: port")
    if not 0 < port < 65536:
        raise MalformedRegistration(f"Port out of range: {port}")
    is_master = data.get("isMaster", False)
    if not isinstance(is_master, bool):
        raise MalformedRegistration("isMaster must be a boolean")
    validate_blob(data["compressedData"])
    return NodeRecord.from_payload({**data, "port": port, "isMaster": is_master})


def validate_hostname(data: Any) -> Tuple[str, Optional[Tuple[str, int]]]:
    """Return (hostname, error_tuple_or_None)."""
    if not isinstance(data, dict):
        return "", ("JSON body required", 400)
    hostname = data.get("hostname")
    if not isinstance(hostname, str) or not hostname.strip():
        return "", ("hostname is required", 400)
    hostname = hostname.strip()
    if not is_valid_hostname(hostname):
        return "", ("invalid hostname", 400)
    return hostname, None


__all__ = ["validate_registration", "validate_hostname"]
