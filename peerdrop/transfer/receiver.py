"""
Chunk Receiver

Design Decision: Concurrent Transfers
=====================================

Options Considered:
1. Map of buffers, pick "the first one" for incoming chunks
   - What a naive implementation drifts into
   - Chunks can land in the wrong file

2. Map of buffers keyed by transfer id, truly parallel
   - Needs per-transfer progress and status everywhere

3. Exactly one active buffer, reject anything else
   - Matches a single status / progress per session
   - Explicit error instead of silent misrouting

Decision: Exactly one active buffer
- Metadata for a second transfer is rejected with TRANSFER_IN_PROGRESS
- The active transfer is left untouched

Ordering:
- The channel delivers in order, so chunks must arrive as 0, 1, 2, ...
- Anything else is unrecoverable for that transfer (no reordering)
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .codec import ChunkCodec, ChunkEvent, DecodedEvent, MetadataEvent, Unrecognized
from .errors import ErrorKind, TransferError
from .models import Chunk, FileMetadata, ReceivedFile, expected_chunk_length, progress_percent

logger = logging.getLogger(__name__)


@dataclass
class ReassemblyBuffer:
    """Payloads received so far for one transfer."""
    metadata: FileMetadata
    payloads: List[bytes] = field(default_factory=list)
    bytes_received: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def transfer_id(self) -> str:
        return self.metadata.transfer_id

    @property
    def next_index(self) -> int:
        return len(self.payloads)

    def append(self, payload: bytes):
        self.payloads.append(payload)
        self.bytes_received += len(payload)

    def assemble(self) -> bytes:
        return b''.join(self.payloads)


# Callback types
StartedCallback = Callable[[FileMetadata], None]
ProgressCallback = Callable[[int, int], None]  # (percent, bytes_received)
CompleteCallback = Callable[[ReceivedFile], None]


class Receiver:
    """
    Reassembles one inbound transfer at a time.

    on_message() is the only entry point and must not be called
    concurrently; the session serializes inbound delivery.

    Failures raise TransferError. Except for TRANSFER_IN_PROGRESS, the
    active buffer has already been discarded when that happens.
    """

    def __init__(self, validate_geometry: bool = True,
                 on_started: Optional[StartedCallback] = None,
                 on_progress: Optional[ProgressCallback] = None,
                 on_complete: Optional[CompleteCallback] = None):
        self.validate_geometry = validate_geometry
        self.on_started = on_started
        self.on_progress = on_progress
        self.on_complete = on_complete

        self.active: Optional[ReassemblyBuffer] = None

        # Statistics
        self.files_received = 0
        self.total_bytes = 0

    def on_message(self, message) -> DecodedEvent:
        """
        Handle one inbound message.

        Returns:
            The decoded event (Unrecognized messages are logged and dropped)
        """
        event = ChunkCodec.decode(message)

        if isinstance(event, MetadataEvent):
            self._handle_metadata(event.metadata)
        elif isinstance(event, ChunkEvent):
            self._handle_chunk(event.chunk)
        elif isinstance(event, Unrecognized):
            logger.warning(f"Ignoring unrecognized message: {event.reason}")

        return event

    def abandon(self) -> bool:
        """Discard the active buffer, if any. No completion is emitted."""
        if self.active is None:
            return False
        logger.info(f"Abandoning transfer {self.active.transfer_id} "
                    f"at chunk {self.active.next_index}/{self.active.metadata.chunk_count}")
        self.active = None
        return True

    def _handle_metadata(self, metadata: FileMetadata):
        if self.active is not None:
            if self.active.transfer_id == metadata.transfer_id:
                self.active = None
                raise TransferError(ErrorKind.PROTOCOL_VIOLATION,
                                    f"Duplicate metadata for {metadata.transfer_id}")
            raise TransferError(ErrorKind.TRANSFER_IN_PROGRESS,
                                f"Rejecting {metadata.transfer_id}: "
                                f"{self.active.transfer_id} is still active")

        if self.validate_geometry and not metadata.is_consistent:
            raise TransferError(
                ErrorKind.PROTOCOL_VIOLATION,
                f"chunkCount {metadata.chunk_count} does not match "
                f"size {metadata.total_size} / chunkSize {metadata.chunk_size}"
            )

        self.active = ReassemblyBuffer(metadata=metadata)
        logger.info(f"Receiving {metadata.name} as {metadata.transfer_id}: "
                    f"{metadata.total_size:,} bytes in {metadata.chunk_count} chunks")

        if self.on_started:
            self.on_started(metadata)

    def _handle_chunk(self, chunk: Chunk):
        buffer = self.active
        if buffer is None or buffer.transfer_id != chunk.transfer_id:
            logger.warning(f"Ignoring chunk {chunk.index} for unknown transfer {chunk.transfer_id}")
            return

        metadata = buffer.metadata

        if chunk.index >= metadata.chunk_count or chunk.index >= chunk.chunk_count:
            self.active = None
            raise TransferError(ErrorKind.PROTOCOL_VIOLATION,
                                f"Chunk index {chunk.index} out of range "
                                f"(chunkCount {metadata.chunk_count})")

        if chunk.index != buffer.next_index:
            self.active = None
            raise TransferError(ErrorKind.OUT_OF_ORDER_CHUNK,
                                f"Expected chunk {buffer.next_index}, got {chunk.index}")

        if self.validate_geometry:
            self._check_geometry(chunk, metadata)

        buffer.append(chunk.payload)
        logger.debug(f"Received chunk {chunk.index + 1}/{metadata.chunk_count} "
                     f"({len(chunk.payload)} bytes)")

        if self.on_progress:
            self.on_progress(progress_percent(chunk.index, metadata.chunk_count),
                             buffer.bytes_received)

        # Trust the declared count when validation is off, as the wire does
        if chunk.is_last or buffer.next_index == metadata.chunk_count:
            self._finish(buffer)

    def _check_geometry(self, chunk: Chunk, metadata: FileMetadata):
        if chunk.chunk_count != metadata.chunk_count:
            self.active = None
            raise TransferError(ErrorKind.PROTOCOL_VIOLATION,
                                f"Chunk declares {chunk.chunk_count} chunks, "
                                f"metadata declared {metadata.chunk_count}")

        expected = expected_chunk_length(chunk.index, metadata.total_size, metadata.chunk_size)
        if len(chunk.payload) != expected:
            self.active = None
            raise TransferError(ErrorKind.PROTOCOL_VIOLATION,
                                f"Chunk {chunk.index} has {len(chunk.payload)} bytes, "
                                f"expected {expected}")

    def _finish(self, buffer: ReassemblyBuffer):
        data = buffer.assemble()
        self.active = None

        self.files_received += 1
        self.total_bytes += len(data)

        elapsed = max(time.time() - buffer.started_at, 1e-6)
        logger.info(f"Received {buffer.metadata.name}: {len(data):,} bytes "
                    f"in {elapsed:.2f}s")

        if self.on_complete:
            self.on_complete(ReceivedFile(
                name=buffer.metadata.name,
                data=data,
                size=len(data),
                transfer_id=buffer.transfer_id,
            ))

    def get_stats(self) -> dict:
        """Get receiver statistics."""
        return {
            'files_received': self.files_received,
            'total_bytes': self.total_bytes,
            'active_transfer': self.active.transfer_id if self.active else None,
        }
