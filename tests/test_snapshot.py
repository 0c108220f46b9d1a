import base64
import json
import zlib

import pytest

from inframon import snapshot
from inframon.errors import MalformedRegistration, MalformedSnapshot
from inframon.snapshot import Snapshot, decode_snapshot, encode_snapshot, validate_blob


def _pack(envelope) -> str:
    return base64.b64encode(zlib.compress(json.dumps(envelope).encode())).decode()


def test_wire_uses_camel_case():
    wire = Snapshot(cpu_usage=3.0, network_rx_history=[1.0]).to_wire()
    assert wire["cpuUsage"] == 3.0
    assert wire["networkRxHistory"] == [1.0]
    assert "cpu_usage" not in wire


def test_decode_preserves_values():
    snap = Snapshot(cpu_usage=42.0, system_name="rack-3", time_points=["10:00:00"],
                    cpu_history=[42.0], cloudflared_running=True)
    decoded = decode_snapshot(encode_snapshot(snap))
    assert decoded == snap


def test_blob_is_compressed_versioned_json():
    raw = json.loads(zlib.decompress(base64.b64decode(encode_snapshot(Snapshot()))))
    assert raw["v"] == 1
    assert raw["data"]["deviceCapabilities"]["flops"] == {"fp32": 0.0, "fp16": 0.0, "int8": 0.0}


def test_unknown_field_rejected():
    data = Snapshot().to_wire()
    data["surprise"] = 1
    with pytest.raises(MalformedSnapshot, match="surprise"):
        decode_snapshot(_pack({"v": 1, "data": data}))


def test_missing_field_rejected():
    data = Snapshot().to_wire()
    del data["uptime"]
    with pytest.raises(MalformedSnapshot, match="uptime"):
        decode_snapshot(_pack({"v": 1, "data": data}))


def test_nested_keys_checked():
    data = Snapshot().to_wire()
    data["storageInfo"] = {"total": 1}
    with pytest.raises(MalformedSnapshot):
        decode_snapshot(_pack({"v": 1, "data": data}))
    data = Snapshot().to_wire()
    data["deviceCapabilities"]["flops"] = {"fp32": 1.0}
    with pytest.raises(MalformedSnapshot):
        decode_snapshot(_pack({"v": 1, "data": data}))


def test_wrong_version_rejected():
    with pytest.raises(MalformedSnapshot, match="version"):
        decode_snapshot(_pack({"v": 2, "data": Snapshot().to_wire()}))


@pytest.mark.parametrize("blob", [None, "", 12, "%%%", base64.b64encode(b"plain").decode()])
def test_garbage_blobs_rejected(blob):
    with pytest.raises(MalformedSnapshot):
        decode_snapshot(blob)


def test_snapshot_error_is_a_registration_error():
    with pytest.raises(MalformedRegistration):
        validate_blob("")


def test_decompression_is_bounded(monkeypatch):
    monkeypatch.setattr(snapshot, "MAX_SNAPSHOT_BYTES", 1024)
    bomb = base64.b64encode(zlib.compress(b"0" * 1_000_000)).decode()
    with pytest.raises(MalformedSnapshot, match="exceeds"):
        decode_snapshot(bomb)


def test_truncated_stream_rejected():
    packed = zlib.compress(json.dumps({"v": 1, "data": Snapshot().to_wire()}).encode())
    with pytest.raises(MalformedSnapshot):
        decode_snapshot(base64.b64encode(packed[:-10]).decode())


def test_snapshot_at_cap_still_decodes(monkeypatch):
    blob = encode_snapshot(Snapshot())
    size = len(zlib.decompress(base64.b64decode(blob)))
    monkeypatch.setattr(snapshot, "MAX_SNAPSHOT_BYTES", size)
    assert decode_snapshot(blob) == Snapshot()
