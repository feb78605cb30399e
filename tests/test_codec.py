"""Tests for the chunk codec and message framing."""

import json
import struct

import pytest

from peerdrop.transfer.codec import (
    ChunkCodec, ChunkEvent, MetadataEvent, TransferMessage, Unrecognized,
    frame_body_length,
)
from peerdrop.transfer.models import Chunk, FileMetadata


def meta_message(**overrides) -> TransferMessage:
    headers = {
        'transferId': 'abc',
        'name': 'photo.jpg',
        'size': 2500,
        'chunkSize': 1000,
        'chunkCount': 3,
    }
    headers.update(overrides)
    return TransferMessage(kind='meta', headers=headers)


def chunk_message(data: bytes = b'xyz', **overrides) -> TransferMessage:
    headers = {'transferId': 'abc', 'index': 0, 'chunkCount': 3}
    headers.update(overrides)
    return TransferMessage(kind='chunk', headers=headers, data=data)


class TestEncodeDecode:

    def test_metadata_roundtrip(self):
        meta = FileMetadata.for_file('t-1', 'report.pdf', 5 * 1024 * 1024 + 7)
        event = ChunkCodec.decode(ChunkCodec.encode_meta(meta))
        assert event == MetadataEvent(meta)

    def test_chunk_roundtrip(self):
        chunk = Chunk('t-1', 4, 6, b'\x00\x01binary\xff')
        event = ChunkCodec.decode(ChunkCodec.encode_chunk(chunk))
        assert event == ChunkEvent(chunk)

    def test_roundtrip_through_bytes(self):
        chunk = Chunk('t-1', 2, 3, b'last')
        raw = ChunkCodec.encode_chunk(chunk).to_bytes()
        event = ChunkCodec.decode(TransferMessage.from_bytes(raw))
        assert event.chunk == chunk
        assert event.chunk.is_last

    def test_wire_shape(self):
        msg = ChunkCodec.encode_meta(FileMetadata('id', 'a.txt', 0, 1024, 1))
        assert msg.kind == 'meta'
        assert msg.headers == {
            'transferId': 'id', 'name': 'a.txt', 'size': 0,
            'chunkSize': 1024, 'chunkCount': 1,
        }
        assert msg.data == b''


class TestDecodeIsTotal:

    @pytest.mark.parametrize("message", [
        None,
        b'raw bytes',
        {'kind': 'meta'},
        TransferMessage(kind='hello'),
        TransferMessage(kind='meta', headers=None),
        meta_message(transferId=''),
        meta_message(transferId=None),
        meta_message(name=42),
        meta_message(size=-1),
        meta_message(size='2500'),
        meta_message(size=True),
        meta_message(chunkSize=0),
        meta_message(chunkCount=0),
        chunk_message(index=-1),
        chunk_message(index=1.5),
        chunk_message(chunkCount=None),
        chunk_message(data='text, not bytes'),
    ])
    def test_malformed_is_unrecognized(self, message):
        event = ChunkCodec.decode(message)
        assert isinstance(event, Unrecognized)
        assert event.reason

    def test_unknown_kind_keeps_kind(self):
        event = ChunkCodec.decode(TransferMessage(kind='ping'))
        assert event.kind == 'ping'

    def test_index_past_chunk_count_still_decodes(self):
        # Range is checked against the active transfer by the receiver
        event = ChunkCodec.decode(chunk_message(index=3))
        assert isinstance(event, ChunkEvent)
        assert event.chunk.index == 3


class TestFraming:

    def test_frame_layout(self):
        msg = TransferMessage(kind='chunk', headers={'index': 1}, data=b'DATA')
        raw = msg.to_bytes()

        total, header_len = struct.unpack('>II', raw[:8])
        header = json.loads(raw[8:8 + header_len])
        assert total == header_len + 4
        assert header == {'type': 'chunk', 'data_length': 4, 'index': 1}
        assert raw[8 + header_len:] == b'DATA'
        assert frame_body_length(raw[:4]) == len(raw) - 4

    def test_invalid_header_json(self):
        header = b'not json'
        body = struct.pack('>I', len(header)) + header
        with pytest.raises(ValueError):
            TransferMessage.from_body(body)

    def test_missing_type(self):
        header = json.dumps({'data_length': 0}).encode()
        body = struct.pack('>I', len(header)) + header
        with pytest.raises(ValueError):
            TransferMessage.from_body(body)

    def test_data_length_mismatch(self):
        header = json.dumps({'type': 'chunk', 'data_length': 10}).encode()
        body = struct.pack('>I', len(header)) + header + b'short'
        with pytest.raises(ValueError):
            TransferMessage.from_body(body)

    def test_truncated_frame(self):
        raw = TransferMessage(kind='meta', headers={'a': 1}).to_bytes()
        with pytest.raises(ValueError):
            TransferMessage.from_bytes(raw[:-1])
