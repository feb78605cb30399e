"""
Stream Channel

TCP transport for the transfer protocol. Messages are length-prefixed
frames (see transfer.codec) over an asyncio stream.

Design Decision: Transport
==========================

Options Considered:
1. WebRTC data channel
   - What browsers use, needs signaling + ICE
   - Heavy dependency stack

2. WebSocket
   - Message oriented, needs an HTTP upgrade

3. Raw TCP with length-prefixed frames
   - Ordered and reliable already
   - Lightweight, no dependencies

Decision: Raw TCP with length-prefixed frames
- Provides exactly the ordered, reliable channel the transfer layer assumes
- Connection setup stays outside the transfer layer
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

from .base import Channel
from ..transfer.codec import MAX_MESSAGE_SIZE, TransferMessage, frame_body_length

logger = logging.getLogger(__name__)


class StreamChannel(Channel):
    """
    Channel over an asyncio StreamReader/StreamWriter pair.

    Sends are serialized with a lock so frames never interleave.
    """

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter,
                 max_message_size: int = MAX_MESSAGE_SIZE):
        self.reader = reader
        self.writer = writer
        self.max_message_size = max_message_size
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def remote_address(self) -> Tuple[str, int]:
        """Get remote peer address."""
        return self.writer.get_extra_info('peername')

    @property
    def peer(self) -> str:
        address = self.remote_address
        if not address:
            return 'unknown'
        return f"{address[0]}:{address[1]}"

    @property
    def is_open(self) -> bool:
        return not self._closed and not self.writer.is_closing()

    async def send(self, message: TransferMessage):
        """Send a message."""
        if not self.is_open:
            raise ConnectionError("Connection closed")

        data = message.to_bytes()
        async with self._lock:
            self.writer.write(data)
            await self.writer.drain()

    async def receive(self) -> Optional[TransferMessage]:
        """
        Receive the next message.

        Frames with an unreadable header are skipped; an oversized frame
        desynchronizes the stream, so the connection is closed.
        """
        while not self._closed:
            try:
                prefix = await self.reader.readexactly(4)
                body_length = frame_body_length(prefix)

                if body_length > self.max_message_size:
                    logger.error(f"Message too large from {self.peer}: {body_length}")
                    await self.close()
                    return None

                body = await self.reader.readexactly(body_length)
            except asyncio.IncompleteReadError:
                return None
            except (ConnectionError, OSError) as e:
                logger.warning(f"Connection error from {self.peer}: {e}")
                return None

            try:
                return TransferMessage.from_body(body)
            except ValueError as e:
                logger.warning(f"Dropping malformed frame from {self.peer}: {e}")

        return None

    async def close(self):
        """Close the connection."""
        if not self._closed:
            self._closed = True
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Error while closing connection: {e}")


# Called once per accepted connection
ChannelHandler = Callable[[StreamChannel], Awaitable[None]]


class ChannelServer:
    """
    TCP server handing each accepted connection to a handler as a channel.
    """

    def __init__(self, handler: ChannelHandler, host: str = '0.0.0.0',
                 port: int = 8470, max_message_size: int = MAX_MESSAGE_SIZE):
        self.handler = handler
        self.host = host
        self.port = port
        self.max_message_size = max_message_size
        self.server: Optional[asyncio.AbstractServer] = None
        self._running = False

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """Bound address (useful when port 0 was requested)."""
        if self.server is None or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[:2]

    async def start(self):
        """Start listening."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port
        )
        self._running = True

        logger.info(f"Channel server listening on {self.address}")

    async def stop(self):
        """Stop listening."""
        self._running = False
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            logger.info("Channel server stopped")

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        channel = StreamChannel(reader, writer, self.max_message_size)
        peer = channel.peer
        logger.info(f"Peer connected: {peer}")

        try:
            await self.handler(channel)
        except Exception as e:
            logger.error(f"Error handling connection from {peer}: {e}")
        finally:
            await channel.close()
            logger.info(f"Peer disconnected: {peer}")


async def connect_to_peer(host: str, port: int, timeout: float = 10.0,
                          max_message_size: int = MAX_MESSAGE_SIZE) -> Optional[StreamChannel]:
    """
    Connect to a peer's channel server.

    Returns:
        StreamChannel, or None if connection failed
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
        return StreamChannel(reader, writer, max_message_size)
    except (asyncio.TimeoutError, OSError) as e:
        logger.error(f"Failed to connect to {host}:{port}: {e}")
        return None
