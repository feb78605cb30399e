"""
Chunk Sender

Design Decision: Send Pipeline
==============================

Options Considered:
1. Read the whole file, then send
   - Simple
   - Memory grows with file size

2. Read ahead with a bounded queue of chunks
   - Overlaps disk and network
   - More moving parts, more memory in flight

3. Strictly serialized read -> send -> read
   - One chunk in memory at a time
   - Disk and network never overlap

Decision: Strictly serialized read -> send -> read
- Memory stays O(chunk_size) regardless of file size
- The channel already buffers and orders, so overlap buys little
- Reads go through aiofiles so they never block the event loop

Send Flow:
1. Open file, compute metadata, send metadata
2. For each index: read chunk_size bytes, send chunk, report progress
3. Close the file (always, also on failure or cancellation)
"""

import logging
from pathlib import Path
from typing import Callable, Optional, TYPE_CHECKING

import aiofiles
import aiofiles.os

from .codec import ChunkCodec
from .errors import ErrorKind, TransferError
from .models import (
    CHUNK_SIZE, Chunk, FileMetadata, expected_chunk_length,
    generate_transfer_id, progress_percent,
)

if TYPE_CHECKING:
    from ..channel.base import Channel

logger = logging.getLogger(__name__)

# Called with the integer percentage after each chunk is handed to the channel
ProgressCallback = Callable[[int], None]


class Sender:
    """
    Streams one file over a channel, one chunk at a time.

    Usage:
        sender = Sender(on_progress=print)
        transfer_id = await sender.begin_transfer(path, channel)
        await sender.stream_chunks()
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE,
                 on_progress: Optional[ProgressCallback] = None):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.on_progress = on_progress

        self.metadata: Optional[FileMetadata] = None
        self.channel: Optional['Channel'] = None
        self._file = None

        # Statistics
        self.chunks_sent = 0
        self.bytes_sent = 0

    @property
    def transfer_id(self) -> Optional[str]:
        return self.metadata.transfer_id if self.metadata else None

    @property
    def is_open(self) -> bool:
        """True while the source file handle is held."""
        return self._file is not None

    @property
    def all_sent(self) -> bool:
        """True once every chunk has been handed to the channel."""
        return self.metadata is not None and self.chunks_sent == self.metadata.chunk_count

    async def begin_transfer(self, path: Path, channel: 'Channel',
                             name: Optional[str] = None) -> str:
        """
        Open the file and announce the transfer.

        Returns:
            The new transfer id

        Raises:
            TransferError: NO_ACTIVE_CHANNEL, READ_FAILURE or CHANNEL_CLOSED
        """
        if channel is None or not channel.is_open:
            raise TransferError(ErrorKind.NO_ACTIVE_CHANNEL, "Channel is not open")
        if self.metadata is not None:
            raise TransferError(ErrorKind.TRANSFER_IN_PROGRESS,
                                f"Sender already used for {self.transfer_id}")

        path = Path(path)
        try:
            stat = await aiofiles.os.stat(path)
            self._file = await aiofiles.open(path, 'rb')
        except OSError as e:
            raise TransferError(ErrorKind.READ_FAILURE, f"Cannot open {path}: {e}") from e

        self.channel = channel
        self.metadata = FileMetadata.for_file(
            transfer_id=generate_transfer_id(),
            name=name or path.name,
            total_size=stat.st_size,
            chunk_size=self.chunk_size,
        )

        try:
            await channel.send(ChunkCodec.encode_meta(self.metadata))
        except (ConnectionError, OSError) as e:
            await self.close()
            raise TransferError(ErrorKind.CHANNEL_CLOSED, f"Metadata send failed: {e}") from e

        logger.info(f"Sending {self.metadata.name} as {self.transfer_id}: "
                    f"{self.metadata.total_size:,} bytes in {self.metadata.chunk_count} chunks")
        return self.metadata.transfer_id

    async def stream_chunks(self):
        """
        Send chunks 0..chunk_count-1 in order.

        The file is closed on return, failure or cancellation.

        Raises:
            TransferError: READ_FAILURE or CHANNEL_CLOSED
        """
        if self.metadata is None:
            raise RuntimeError("begin_transfer() must be called first")

        metadata = self.metadata
        try:
            for index in range(self.chunks_sent, metadata.chunk_count):
                payload = await self._read_chunk(index)

                chunk = Chunk(
                    transfer_id=metadata.transfer_id,
                    index=index,
                    chunk_count=metadata.chunk_count,
                    payload=payload,
                )
                try:
                    await self.channel.send(ChunkCodec.encode_chunk(chunk))
                except (ConnectionError, OSError) as e:
                    raise TransferError(ErrorKind.CHANNEL_CLOSED,
                                        f"Send of chunk {index} failed: {e}") from e

                self.chunks_sent += 1
                self.bytes_sent += len(payload)
                logger.debug(f"Sent chunk {index + 1}/{metadata.chunk_count} "
                             f"({len(payload)} bytes)")

                if self.on_progress:
                    self.on_progress(progress_percent(index, metadata.chunk_count))
        finally:
            await self.close()

    async def _read_chunk(self, index: int) -> bytes:
        """Read the next chunk from the current offset."""
        metadata = self.metadata
        expected = expected_chunk_length(index, metadata.total_size, metadata.chunk_size)
        if self._file is None:
            raise TransferError(ErrorKind.READ_FAILURE, f"Source file closed before chunk {index}")
        try:
            payload = await self._file.read(metadata.chunk_size)
        except (OSError, ValueError) as e:
            raise TransferError(ErrorKind.READ_FAILURE, f"Read of chunk {index} failed: {e}") from e

        if len(payload) != expected:
            # File changed size underneath us
            raise TransferError(ErrorKind.READ_FAILURE,
                                f"Chunk {index}: read {len(payload)} bytes, expected {expected}")
        return payload

    async def close(self):
        """Release the file handle."""
        if self._file is not None:
            f, self._file = self._file, None
            try:
                await f.close()
            except OSError as e:
                logger.debug(f"Error closing source file: {e}")

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            'transfer_id': self.transfer_id,
            'chunks_sent': self.chunks_sent,
            'bytes_sent': self.bytes_sent,
            'chunk_count': self.metadata.chunk_count if self.metadata else 0,
        }
