"""
PeerDrop - Direct Peer-to-Peer File Transfer

Sends one file at a time over an already-open, ordered, reliable message
channel: metadata first, then fixed-size chunks, reassembled on the far
side.
"""

from .transfer import (
    CHUNK_SIZE, ChunkCodec, ErrorKind, FileMetadata, Chunk, ReceivedFile,
    Receiver, Sender, TransferError, TransferSession, TransferStatus,
)
from .channel import Channel, MemoryChannel, StreamChannel, ChannelServer, connect_to_peer

__version__ = '0.1.0'

__all__ = [
    'CHUNK_SIZE',
    'ChunkCodec',
    'ErrorKind',
    'FileMetadata',
    'Chunk',
    'ReceivedFile',
    'Receiver',
    'Sender',
    'TransferError',
    'TransferSession',
    'TransferStatus',
    'Channel',
    'MemoryChannel',
    'StreamChannel',
    'ChannelServer',
    'connect_to_peer',
]
