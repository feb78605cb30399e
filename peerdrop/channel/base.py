"""
Channel Interface

A channel is an already-established, ordered, reliable, bidirectional
message transport between two peers. How it was established (signaling,
NAT traversal, a plain TCP connect) is not the transfer layer's concern.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..transfer.codec import TransferMessage


class Channel(ABC):
    """Message-oriented peer connection."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while messages can be sent."""

    @property
    def peer(self) -> str:
        """Printable identity of the remote end."""
        return 'peer'

    @abstractmethod
    async def send(self, message: TransferMessage):
        """
        Hand a message to the channel.

        Raises:
            ConnectionError: if the channel is closed
        """

    @abstractmethod
    async def receive(self) -> Optional[TransferMessage]:
        """Next inbound message in delivery order, or None once closed."""

    @abstractmethod
    async def close(self):
        """Close the channel. Safe to call more than once."""
