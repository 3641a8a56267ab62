"""Streaming wire protocol: codecs, decoders and the record writer.

Records travel as ``key<TAB>value`` lines. Reading and writing each run on
their own thread and hand data over bounded channels, so a task can parse,
compute and emit concurrently.
"""

from streamjob.protocol.channel import CHANNEL_DEPTH, Channel
from streamjob.protocol.codecs import JSON, RAW, RAW_JSON, Codec, JsonCodec, KeyValue, RawCodec, RawJsonCodec
from streamjob.protocol.readers import (
    KeyGroup,
    decode_grouped_input,
    decode_lines,
    decode_pairs,
    decode_records,
)
from streamjob.protocol.writers import RecordWriter, encode_records

__all__ = [
    "CHANNEL_DEPTH",
    "JSON",
    "RAW",
    "RAW_JSON",
    "Channel",
    "Codec",
    "JsonCodec",
    "KeyGroup",
    "KeyValue",
    "RawCodec",
    "RawJsonCodec",
    "RecordWriter",
    "decode_grouped_input",
    "decode_lines",
    "decode_pairs",
    "decode_records",
    "encode_records",
]
