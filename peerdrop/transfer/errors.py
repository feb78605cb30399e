"""
Transfer Errors

Every error kind is terminal for the transfer it affects. Nothing in the
core retries; retry is a decision for whoever drives the session.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Reasons a transfer can fail."""
    NO_ACTIVE_CHANNEL = "NoActiveChannel"
    READ_FAILURE = "ReadFailure"
    TRANSFER_IN_PROGRESS = "TransferInProgress"
    OUT_OF_ORDER_CHUNK = "OutOfOrderChunk"
    PROTOCOL_VIOLATION = "ProtocolViolation"
    CHANNEL_CLOSED = "ChannelClosed"
    CANCELLED = "Cancelled"


class TransferError(Exception):
    """A transfer failure tagged with its ErrorKind."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or kind.value
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"TransferError({self.kind.value}: {self.message})"
