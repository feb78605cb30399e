"""
Transfer Module - Chunked File Transfer

Splits a file into chunks, streams it over a channel and reassembles it
on the other side.
"""

from .errors import ErrorKind, TransferError
from .models import (
    CHUNK_SIZE, TransferStatus, FileMetadata, Chunk, ReceivedFile,
    generate_transfer_id, get_chunk_count, format_file_size,
)
from .codec import ChunkCodec, TransferMessage, MetadataEvent, ChunkEvent, Unrecognized
from .sender import Sender
from .receiver import Receiver, ReassemblyBuffer
from .session import TransferSession

__all__ = [
    'ErrorKind',
    'TransferError',
    'CHUNK_SIZE',
    'TransferStatus',
    'FileMetadata',
    'Chunk',
    'ReceivedFile',
    'generate_transfer_id',
    'get_chunk_count',
    'format_file_size',
    'ChunkCodec',
    'TransferMessage',
    'MetadataEvent',
    'ChunkEvent',
    'Unrecognized',
    'Sender',
    'Receiver',
    'ReassemblyBuffer',
    'TransferSession',
]
