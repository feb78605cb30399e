"""Fakes and helpers shared by the transfer tests."""

import asyncio
from typing import List, Optional

from peerdrop.channel.base import Channel
from peerdrop.transfer.codec import TransferMessage


class RecordingChannel(Channel):
    """
    A channel that records everything sent on it.

    close_after: number of successful sends before the channel closes
    itself and further sends raise ConnectionError.
    """

    def __init__(self, close_after: Optional[int] = None):
        self.sent: List[TransferMessage] = []
        self.close_after = close_after
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def send(self, message: TransferMessage):
        if self._closed:
            raise ConnectionError("Channel closed")
        if self.close_after is not None and len(self.sent) >= self.close_after:
            self._closed = True
            raise ConnectionError("Connection reset by peer")
        self.sent.append(message)
        await asyncio.sleep(0)

    async def receive(self) -> Optional[TransferMessage]:
        return None

    async def close(self):
        self._closed = True

    @property
    def chunks(self) -> List[TransferMessage]:
        return [m for m in self.sent if m.kind == 'chunk']


async def wait_for_terminal(session, timeout: float = 5.0):
    """Wait until a session reaches Complete or Failed."""
    done = asyncio.Event()

    def on_status(status):
        if status.is_terminal:
            done.set()

    unsubscribe = session.on_status_change(on_status)
    try:
        if not session.status.is_terminal:
            await asyncio.wait_for(done.wait(), timeout)
    finally:
        unsubscribe()
    return session.status


class GatedChannel(RecordingChannel):
    """A recording channel whose sends block until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def send(self, message: TransferMessage):
        self.entered.set()
        await self.gate.wait()
        await super().send(message)
