"""
Channel Module - Peer Connections

Ordered, reliable message channels the transfer layer runs over.
"""

from .base import Channel
from .memory import MemoryChannel
from .stream import StreamChannel, ChannelServer, connect_to_peer

__all__ = [
    'Channel',
    'MemoryChannel',
    'StreamChannel',
    'ChannelServer',
    'connect_to_peer',
]
