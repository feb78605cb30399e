"""
Chunk Codec

Design Decision: Message Representation
=======================================

Options Considered:
1. Pure JSON messages with base64 payloads
   - Easy to inspect
   - 33% payload overhead on every chunk

2. Fixed binary header (struct)
   - Compact
   - Rigid, awkward for variable-length names

3. JSON header + raw binary data
   - Structured metadata, zero-copy payload
   - Needs a small framing layer on byte streams

Decision: JSON header + raw binary data
- A message is a (kind, headers, data) triple, which is what a
  message-oriented channel carries natively
- Stream transports frame it with a length prefix

Wire Format (stream transports only):
```
+----------------+----------------+----------------+----------------+
| Length (4B)    | Header len (4B)| Header (JSON)  | Data (binary)  |
+----------------+----------------+----------------+----------------+
```

Message kinds:
    meta:  {transferId, name, size, chunkSize, chunkCount}, no data
    chunk: {transferId, index, chunkCount}, data = payload
"""

import json
import struct
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from .models import Chunk, FileMetadata

logger = logging.getLogger(__name__)

KIND_META = "meta"
KIND_CHUNK = "chunk"

# 64 MiB
MAX_MESSAGE_SIZE = 64 * 1024 * 1024

_LENGTH = struct.Struct('>I')


@dataclass
class TransferMessage:
    """A channel-native message: kind, JSON-able headers and binary data."""
    kind: str
    headers: Dict[str, Any] = field(default_factory=dict)
    data: bytes = b''

    def to_bytes(self) -> bytes:
        """Serialize message to a length-prefixed frame."""
        header_dict = {
            'type': self.kind,
            'data_length': len(self.data),
            **self.headers
        }
        header_bytes = json.dumps(header_dict).encode('utf-8')

        total_length = len(header_bytes) + len(self.data)

        return (
            _LENGTH.pack(total_length) +
            _LENGTH.pack(len(header_bytes)) +
            header_bytes +
            self.data
        )

    @classmethod
    def from_body(cls, body: bytes) -> 'TransferMessage':
        """
        Parse a frame body (everything after the total length prefix).

        Raises:
            ValueError: if the body is not a well-formed frame
        """
        if len(body) < _LENGTH.size:
            raise ValueError("frame too short")

        header_length = _LENGTH.unpack_from(body)[0]
        header_end = _LENGTH.size + header_length
        if header_end > len(body):
            raise ValueError(f"header length {header_length} exceeds frame")

        try:
            header_dict = json.loads(body[_LENGTH.size:header_end].decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"invalid header: {e}") from e

        if not isinstance(header_dict, dict) or not isinstance(header_dict.get('type'), str):
            raise ValueError("header has no message type")

        data = body[header_end:]
        declared = header_dict.pop('data_length', len(data))
        if declared != len(data):
            raise ValueError(f"data length mismatch: declared {declared}, got {len(data)}")

        kind = header_dict.pop('type')
        return cls(kind=kind, headers=header_dict, data=data)

    @classmethod
    def from_bytes(cls, raw: bytes) -> 'TransferMessage':
        """Parse a complete frame including its length prefix."""
        if len(raw) < _LENGTH.size:
            raise ValueError("frame too short")
        total_length = _LENGTH.unpack_from(raw)[0]
        body = raw[_LENGTH.size:]
        if len(body) != total_length + _LENGTH.size:
            raise ValueError("frame length mismatch")
        return cls.from_body(body)


def frame_body_length(prefix: bytes) -> int:
    """Bytes that follow a 4-byte length prefix (header length field included)."""
    return _LENGTH.unpack(prefix)[0] + _LENGTH.size


@dataclass(frozen=True)
class MetadataEvent:
    metadata: FileMetadata


@dataclass(frozen=True)
class ChunkEvent:
    chunk: Chunk


@dataclass(frozen=True)
class Unrecognized:
    """A message that could not be decoded. Logged and dropped by callers."""
    reason: str
    kind: str = ''


DecodedEvent = Union[MetadataEvent, ChunkEvent, Unrecognized]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ChunkCodec:
    """
    Converts metadata and chunks to and from TransferMessages.

    Decoding is total: malformed input becomes Unrecognized, never an
    exception.
    """

    @staticmethod
    def encode_meta(metadata: FileMetadata) -> TransferMessage:
        return TransferMessage(
            kind=KIND_META,
            headers={
                'transferId': metadata.transfer_id,
                'name': metadata.name,
                'size': metadata.total_size,
                'chunkSize': metadata.chunk_size,
                'chunkCount': metadata.chunk_count,
            },
        )

    @staticmethod
    def encode_chunk(chunk: Chunk) -> TransferMessage:
        return TransferMessage(
            kind=KIND_CHUNK,
            headers={
                'transferId': chunk.transfer_id,
                'index': chunk.index,
                'chunkCount': chunk.chunk_count,
            },
            data=chunk.payload,
        )

    @classmethod
    def decode(cls, message: Any) -> DecodedEvent:
        try:
            if not isinstance(message, TransferMessage):
                return Unrecognized(f"not a transfer message: {type(message).__name__}")
            if not isinstance(message.headers, dict):
                return Unrecognized("headers are not a mapping", message.kind)

            if message.kind == KIND_META:
                return cls._decode_meta(message)
            if message.kind == KIND_CHUNK:
                return cls._decode_chunk(message)
            return Unrecognized(f"unknown message kind {message.kind!r}", str(message.kind))
        except Exception as e:
            # Decoding must never take the inbound loop down
            return Unrecognized(f"decode error: {e}")

    @staticmethod
    def _decode_meta(message: TransferMessage) -> DecodedEvent:
        h = message.headers
        transfer_id = h.get('transferId')
        name = h.get('name')
        size = h.get('size')
        chunk_size = h.get('chunkSize')
        chunk_count = h.get('chunkCount')

        if not isinstance(transfer_id, str) or not transfer_id:
            return Unrecognized("meta: missing transferId", KIND_META)
        if not isinstance(name, str):
            return Unrecognized("meta: missing name", KIND_META)
        if not _is_int(size) or size < 0:
            return Unrecognized(f"meta: invalid size {size!r}", KIND_META)
        if not _is_int(chunk_size) or chunk_size < 1:
            return Unrecognized(f"meta: invalid chunkSize {chunk_size!r}", KIND_META)
        if not _is_int(chunk_count) or chunk_count < 1:
            return Unrecognized(f"meta: invalid chunkCount {chunk_count!r}", KIND_META)

        return MetadataEvent(FileMetadata(
            transfer_id=transfer_id,
            name=name,
            total_size=size,
            chunk_size=chunk_size,
            chunk_count=chunk_count,
        ))

    @staticmethod
    def _decode_chunk(message: TransferMessage) -> DecodedEvent:
        h = message.headers
        transfer_id = h.get('transferId')
        index = h.get('index')
        chunk_count = h.get('chunkCount')

        if not isinstance(transfer_id, str) or not transfer_id:
            return Unrecognized("chunk: missing transferId", KIND_CHUNK)
        if not _is_int(index) or index < 0:
            return Unrecognized(f"chunk: invalid index {index!r}", KIND_CHUNK)
        if not _is_int(chunk_count) or chunk_count < 1:
            return Unrecognized(f"chunk: invalid chunkCount {chunk_count!r}", KIND_CHUNK)
        if not isinstance(message.data, (bytes, bytearray, memoryview)):
            return Unrecognized("chunk: payload is not bytes", KIND_CHUNK)

        return ChunkEvent(Chunk(
            transfer_id=transfer_id,
            index=index,
            chunk_count=chunk_count,
            payload=bytes(message.data),
        ))
