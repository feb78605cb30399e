"""
Transfer Data Model

Metadata, chunks and status shared by the sender, the receiver and the
session. Chunk geometry lives here so both ends compute it the same way.
"""

import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

# Chunk size: 1 MiB
CHUNK_SIZE = 1024 * 1024


def generate_transfer_id() -> str:
    """Generate a fresh, URL-safe transfer identifier."""
    return secrets.token_urlsafe(12)


def get_chunk_count(total_size: int, chunk_size: int) -> int:
    """
    Number of chunks for a file of the given size.

    A zero-byte file still has one (empty) chunk so the receiver sees a
    complete metadata + chunk exchange.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return max(1, (total_size + chunk_size - 1) // chunk_size)


def expected_chunk_length(index: int, total_size: int, chunk_size: int) -> int:
    """Payload length of chunk `index` for the given geometry."""
    chunk_count = get_chunk_count(total_size, chunk_size)
    if index < chunk_count - 1:
        return chunk_size
    return total_size - chunk_size * (chunk_count - 1)


def progress_percent(index: int, chunk_count: int) -> int:
    """Integer percentage after chunk `index` (rounded up, 100 only at the end)."""
    if index >= chunk_count - 1:
        return 100
    return min(99, (100 * (index + 1) + chunk_count - 1) // chunk_count)


class TransferStatus(Enum):
    """Session status. Complete and Failed are terminal until reset."""
    IDLE = "idle"
    SENDING = "sending"
    RECEIVING = "receiving"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.COMPLETE, TransferStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (TransferStatus.SENDING, TransferStatus.RECEIVING)


@dataclass(frozen=True)
class FileMetadata:
    """Announces a transfer. Sent exactly once, before any chunk."""
    transfer_id: str
    name: str
    total_size: int
    chunk_size: int
    chunk_count: int

    @classmethod
    def for_file(cls, transfer_id: str, name: str, total_size: int,
                 chunk_size: int = CHUNK_SIZE) -> 'FileMetadata':
        return cls(
            transfer_id=transfer_id,
            name=name,
            total_size=total_size,
            chunk_size=chunk_size,
            chunk_count=get_chunk_count(total_size, chunk_size),
        )

    @property
    def is_consistent(self) -> bool:
        """True if chunk_count matches total_size / chunk_size."""
        if self.chunk_size <= 0 or self.total_size < 0:
            return False
        return self.chunk_count == get_chunk_count(self.total_size, self.chunk_size)


@dataclass(frozen=True)
class Chunk:
    """One slice of file payload with its sequence index."""
    transfer_id: str
    index: int
    chunk_count: int
    payload: bytes

    @property
    def is_last(self) -> bool:
        return self.index == self.chunk_count - 1

    def __repr__(self) -> str:
        return (f"Chunk(transfer_id={self.transfer_id!r}, index={self.index}, "
                f"chunk_count={self.chunk_count}, payload=<{len(self.payload)} bytes>)")


@dataclass(frozen=True)
class ReceivedFile:
    """A completed file handed to presentation / storage."""
    name: str
    data: bytes
    size: int
    transfer_id: str = ''
    path: Optional[Path] = None

    def __repr__(self) -> str:
        return f"ReceivedFile(name={self.name!r}, size={self.size}, path={self.path})"


def format_file_size(size: int) -> str:
    """Human readable size: bytes, KB, MB or GB with one decimal."""
    if size < 1024:
        return f"{size} bytes"
    if size < 1024 ** 2:
        return f"{size / 1024:.1f} KB"
    if size < 1024 ** 3:
        return f"{size / 1024 ** 2:.1f} MB"
    return f"{size / 1024 ** 3:.1f} GB"
