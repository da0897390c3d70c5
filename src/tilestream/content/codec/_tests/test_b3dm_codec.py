from __future__ import annotations

import json
import struct

import pytest

from tilestream.config.models import CodecSettings
from tilestream.content.codec import DecodeError, decode_payload
from tilestream.content.codec.b3dm import feature_table_rtc_center, read_b3dm
from tilestream.content.codec.glb import CHUNK_JSON, GLB_MAGIC


def _glb(document: dict) -> bytes:
    text = json.dumps(document, indent=1).encode("utf-8")
    text += b" " * ((-len(text)) % 4)
    chunk = struct.pack("<II", len(text), CHUNK_JSON) + text
    return struct.pack("<III", GLB_MAGIC, 2, 12 + len(chunk)) + chunk


def _padded_json(obj) -> bytes:
    if obj is None:
        return b""
    text = json.dumps(obj).encode("utf-8")
    return text + b" " * ((-len(text)) % 8)


def _b3dm(
    glb: bytes,
    feature_table=None,
    feature_binary: bytes = b"",
    batch_table=None,
    *,
    version: int = 1,
    trailing: bytes = b"",
) -> bytes:
    ft_json = _padded_json(feature_table if feature_table is not None else {"BATCH_LENGTH": 0})
    bt_json = _padded_json(batch_table)
    body = ft_json + feature_binary + bt_json + glb + trailing
    header = struct.pack("<4s6I", b"b3dm", version, 28 + len(body), len(ft_json), len(feature_binary), len(bt_json), 0)
    return header + body


GLB_DOC = {
    "asset": {"version": "2.0"},
    "extensionsUsed": ["CESIUM_RTC"],
    "extensionsRequired": ["CESIUM_RTC"],
    "extensions": {"CESIUM_RTC": {"center": [1.0, 2.0, 3.0]}},
}


def test_b3dm_inline_rtc_center_wins_over_glb_extension() -> None:
    glb = _glb(GLB_DOC)
    data = _b3dm(glb, {"BATCH_LENGTH": 0, "RTC_CENTER": [100.0, 200.0, 300.0]})
    decoded = decode_payload(data)

    assert decoded.format == "b3dm"
    assert decoded.rtc_center == (100.0, 200.0, 300.0)
    assert decoded.patch.patched
    assert "extensionsRequired" not in decoded.document
    assert len(decoded.glb) == len(glb)


def test_b3dm_rtc_center_from_feature_binary() -> None:
    binary = struct.pack("<3f", 4.0, 5.0, 6.0) + b"\x00" * 4
    data = _b3dm(_glb({"asset": {"version": "2.0"}}), {"RTC_CENTER": {"byteOffset": 0}}, binary)
    payload = read_b3dm(data)
    assert payload.rtc_center == (4.0, 5.0, 6.0)
    assert payload.feature_table_binary == binary


def test_b3dm_falls_back_to_glb_extension() -> None:
    decoded = decode_payload(_b3dm(_glb(GLB_DOC)))
    assert decoded.rtc_center == (1.0, 2.0, 3.0)


def test_b3dm_without_any_center() -> None:
    decoded = decode_payload(_b3dm(_glb({"asset": {"version": "2.0"}})))
    assert decoded.rtc_center is None
    assert decoded.patch.reason == "absent"


def test_embedded_glb_length_comes_from_glb_header() -> None:
    glb = _glb({"asset": {"version": "2.0"}})
    data = _b3dm(glb, trailing=b"\x00" * 16)
    payload = read_b3dm(data)
    assert bytes(payload.glb) == glb


def test_batch_table_is_parsed() -> None:
    data = _b3dm(_glb({"asset": {"version": "2.0"}}), batch_table={"name": ["a"]})
    assert read_b3dm(data).batch_table == {"name": ["a"]}


def test_too_few_bytes_for_embedded_glb() -> None:
    glb = _glb({"asset": {"version": "2.0"}})
    data = _b3dm(glb)
    ft_end = len(data) - len(glb)
    with pytest.raises(DecodeError):
        read_b3dm(data[:ft_end + 8])


def test_embedded_glb_length_past_buffer() -> None:
    glb = bytearray(_glb({"asset": {"version": "2.0"}}))
    glb[8:12] = struct.pack("<I", len(glb) + 64)
    with pytest.raises(DecodeError):
        read_b3dm(_b3dm(bytes(glb)))


def test_embedded_glb_length_too_small() -> None:
    glb = bytearray(_glb({"asset": {"version": "2.0"}}))
    glb[8:12] = struct.pack("<I", 4)
    with pytest.raises(DecodeError):
        read_b3dm(_b3dm(bytes(glb)))


def test_b3dm_version_mismatch_follows_header_policy() -> None:
    data = _b3dm(_glb({"asset": {"version": "2.0"}}), version=2)
    assert read_b3dm(data).issues
    with pytest.raises(DecodeError):
        decode_payload(data, CodecSettings(strict_headers=True))


def test_short_b3dm_header() -> None:
    with pytest.raises(DecodeError):
        read_b3dm(b"b3dm\x01\x00\x00\x00")


def test_feature_table_rtc_center_malformed() -> None:
    assert feature_table_rtc_center({"RTC_CENTER": [1, 2]}, b"") is None
    assert feature_table_rtc_center({"RTC_CENTER": {"byteOffset": 8}}, b"\x00" * 12) is None
    assert feature_table_rtc_center({}, b"") is None
