# src/streamjob/protocol/codecs.py
"""Key/value segment codecs for the tab-separated streaming wire format.

    <key-bytes> TAB <value-bytes> NEWLINE

A codec decides how the key segment and the value segment are turned into
Python objects and back. The three variants share one collation algorithm
(see readers.decode_grouped_input), which always compares the RAW key
segment byte for byte regardless of codec.

Decoders raise ValueError on unparseable input and encoders raise
TypeError/ValueError on unserializable objects; callers count and skip.
"""

from __future__ import annotations

import json
from typing import Any, NamedTuple, Protocol


class KeyValue(NamedTuple):
    """One record: an opaque key and an opaque value."""

    key: Any
    value: Any


def dumps_json(obj: Any) -> bytes:
    """Compact JSON, rejecting NaN/Infinity which no consumer can parse."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")


def loads_json(data: bytes) -> Any:
    """Parse JSON. Raises ValueError (JSONDecodeError or UnicodeDecodeError)."""
    return json.loads(data)


def _raw_bytes(obj: Any) -> bytes:
    if isinstance(obj, bytes):
        return obj
    if isinstance(obj, bytearray | memoryview):
        return bytes(obj)
    if isinstance(obj, str):
        return obj.encode("utf-8")
    raise TypeError(f"raw key must be bytes or str, got {type(obj).__name__}")


class Codec(Protocol):
    """How key and value segments map to Python objects."""

    name: str

    def decode_key(self, segment: bytes) -> Any: ...

    def decode_value(self, segment: bytes) -> Any: ...

    def encode_key(self, key: Any) -> bytes: ...

    def encode_value(self, value: Any) -> bytes: ...


class JsonCodec:
    """JSON-encoded key and JSON-encoded value."""

    name = "json"

    def decode_key(self, segment: bytes) -> Any:
        return loads_json(segment)

    def decode_value(self, segment: bytes) -> Any:
        return loads_json(segment)

    def encode_key(self, key: Any) -> bytes:
        return dumps_json(key)

    def encode_value(self, value: Any) -> bytes:
        return dumps_json(value)


class RawJsonCodec(JsonCodec):
    """Pre-framed raw key bytes and a JSON-encoded value.

    Useful in reducers that pass a key through unchanged: the key is never
    parsed and is written back exactly as it was read.
    """

    name = "raw_json"

    def decode_key(self, segment: bytes) -> bytes:
        return segment

    def encode_key(self, key: Any) -> bytes:
        return _raw_bytes(key)


class RawCodec:
    """Raw bytes for both key and value. Nothing is parsed.

    On output, values that are not bytes or str are written with str().
    """

    name = "raw"

    def decode_key(self, segment: bytes) -> bytes:
        return segment

    def decode_value(self, segment: bytes) -> bytes:
        return segment

    def encode_key(self, key: Any) -> bytes:
        if isinstance(key, bytes | bytearray | memoryview | str):
            return _raw_bytes(key)
        return str(key).encode("utf-8")

    def encode_value(self, value: Any) -> bytes:
        if isinstance(value, bytes | bytearray | memoryview | str):
            return _raw_bytes(value)
        return str(value).encode("utf-8")


JSON = JsonCodec()
RAW_JSON = RawJsonCodec()
RAW = RawCodec()
