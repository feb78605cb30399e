"""
In-Process Channel

A pair of connected endpoints backed by asyncio queues. Ordered and
reliable, like the real thing; used for loopback transfers and tests.
"""

import asyncio
import logging
from typing import Optional, Tuple

from .base import Channel
from ..transfer.codec import TransferMessage

logger = logging.getLogger(__name__)

# Sentinel pushed into an inbox when the connection closes
_CLOSED = None


class MemoryChannel(Channel):
    """
    One end of an in-memory channel.

    With serialize=True every message goes through the byte framing, so
    the far end sees exactly what a stream transport would deliver.
    """

    def __init__(self, name: str = 'memory', serialize: bool = False):
        self.name = name
        self.serialize = serialize
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._remote: Optional['MemoryChannel'] = None
        self._closed = False

        # Statistics
        self.messages_sent = 0
        self.bytes_sent = 0

    @classmethod
    def pair(cls, serialize: bool = False) -> Tuple['MemoryChannel', 'MemoryChannel']:
        """Create two connected endpoints."""
        a = cls('memory-a', serialize)
        b = cls('memory-b', serialize)
        a._remote = b
        b._remote = a
        return a, b

    @property
    def is_open(self) -> bool:
        return not self._closed and self._remote is not None

    @property
    def peer(self) -> str:
        return self._remote.name if self._remote else 'unconnected'

    async def send(self, message: TransferMessage):
        if not self.is_open:
            raise ConnectionError("Channel closed")

        item = message.to_bytes() if self.serialize else message
        self._remote._inbox.put_nowait(item)
        self.messages_sent += 1
        self.bytes_sent += len(message.data)

        # Yield so the far end gets a chance to consume
        await asyncio.sleep(0)

    async def receive(self) -> Optional[TransferMessage]:
        while True:
            item = await self._inbox.get()
            if item is _CLOSED:
                # Keep the sentinel for any later receive() calls
                self._inbox.put_nowait(_CLOSED)
                return None
            if not self.serialize:
                return item
            try:
                return TransferMessage.from_bytes(item)
            except ValueError as e:
                logger.warning(f"Dropping malformed frame on {self.name}: {e}")

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self._inbox.put_nowait(_CLOSED)
        remote = self._remote
        if remote is not None and not remote._closed:
            remote._closed = True
            remote._inbox.put_nowait(_CLOSED)
        logger.debug(f"Memory channel {self.name} closed")
