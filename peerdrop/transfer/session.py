"""
Transfer Session

The state machine for one logical transfer over one channel, in either
the sending or the receiving role.

State Machine:
```
          start_send()             last chunk handed to channel
  IDLE ---------------> SENDING -----------------------------> COMPLETE
    |                      |
    |  metadata received   |  read / channel failure, cancel()
    +----------------> RECEIVING ----------------------------> FAILED
    |                      |        last chunk reassembled
    |                      +---------------------------------> COMPLETE
    |  inconsistent metadata
    +--------------------------------------------------------> FAILED

  reset(): any state -> IDLE
```

Complete and Failed are terminal. Inbound messages arriving in a
terminal state are dropped until the owner calls reset().

Listener notification order for terminal transitions is fixed:
file_received / failed first, the status change last. Any listener may
call reset() from inside its callback; a transfer reset that way is not
moved to a terminal state afterwards.
"""

import asyncio
import time
import logging
from contextlib import suppress
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, TYPE_CHECKING

from .codec import ChunkCodec, MetadataEvent, Unrecognized
from .errors import ErrorKind, TransferError
from .models import CHUNK_SIZE, FileMetadata, ReceivedFile, TransferStatus
from .receiver import Receiver
from .sender import Sender

if TYPE_CHECKING:
    from ..channel.base import Channel

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    TransferStatus.IDLE: {TransferStatus.SENDING, TransferStatus.RECEIVING, TransferStatus.FAILED},
    TransferStatus.SENDING: {TransferStatus.COMPLETE, TransferStatus.FAILED},
    TransferStatus.RECEIVING: {TransferStatus.COMPLETE, TransferStatus.FAILED},
    TransferStatus.COMPLETE: set(),
    TransferStatus.FAILED: set(),
}

ROLE_SENDER = 'sender'
ROLE_RECEIVER = 'receiver'


class TransferSession:
    """
    Coordinates one transfer and reports it to presentation.

    Events (register with the on_* methods, each returns an unsubscribe
    callable):
        status:   TransferStatus
        progress: int (0..100)
        file:     ReceivedFile
        failed:   ErrorKind
        rejected: (transfer_id, ErrorKind) for metadata that was turned away
    """

    def __init__(self, channel: Optional['Channel'] = None,
                 chunk_size: int = CHUNK_SIZE,
                 validate_geometry: bool = True):
        self.channel = channel
        self.chunk_size = chunk_size
        self.validate_geometry = validate_geometry

        self._status = TransferStatus.IDLE
        self._progress = 0
        # Bumped by reset() so in-flight notifications can tell they are stale
        self._resets = 0
        self.failure: Optional[ErrorKind] = None
        self.failure_message: Optional[str] = None

        self.role: Optional[str] = None
        self.transfer_id: Optional[str] = None
        self.selected_file: Optional[Path] = None
        self.file_name: str = ''
        self.file_size: int = 0
        self.bytes_transferred = 0
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

        self.sender: Optional[Sender] = None
        self.receiver = self._new_receiver()
        self._send_task: Optional[asyncio.Task] = None
        self._closing: Set[asyncio.Future] = set()

        # Serializes inbound handling
        self._inbound_lock = asyncio.Lock()

        self._listeners: Dict[str, List[Callable]] = {
            'status': [], 'progress': [], 'file': [], 'failed': [], 'rejected': [],
        }

    # === State ===

    @property
    def status(self) -> TransferStatus:
        return self._status

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.time()
        return max(0.0, end - self.started_at)

    @property
    def speed_bytes_per_sec(self) -> float:
        elapsed = self.elapsed_seconds
        if elapsed == 0:
            return 0
        return self.bytes_transferred / elapsed

    # === Subscriptions ===

    def on_status_change(self, callback: Callable[[TransferStatus], None]) -> Callable[[], None]:
        return self._subscribe('status', callback)

    def on_progress(self, callback: Callable[[int], None]) -> Callable[[], None]:
        return self._subscribe('progress', callback)

    def on_file_received(self, callback: Callable[[ReceivedFile], None]) -> Callable[[], None]:
        return self._subscribe('file', callback)

    def on_failed(self, callback: Callable[[ErrorKind], None]) -> Callable[[], None]:
        return self._subscribe('failed', callback)

    def on_rejected(self, callback: Callable[[str, ErrorKind], None]) -> Callable[[], None]:
        return self._subscribe('rejected', callback)

    def _subscribe(self, event: str, callback: Callable) -> Callable[[], None]:
        self._listeners[event].append(callback)

        def unsubscribe():
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        return unsubscribe

    def _emit(self, event: str, *args):
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Listener for {event!r} raised")

    # === Presentation commands ===

    def select_file(self, path: Path) -> Path:
        """Choose the file for the next start_send()."""
        if self._status is not TransferStatus.IDLE:
            raise TransferError(ErrorKind.TRANSFER_IN_PROGRESS,
                                f"Cannot select a file while {self._status.value}")
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Not a file: {path}")

        self.selected_file = path
        self.file_name = path.name
        self.file_size = path.stat().st_size
        logger.info(f"File selected: {self.file_name} ({self.file_size:,} bytes)")
        return path

    def attach(self, channel: 'Channel'):
        """Use this channel for sending and listen()."""
        self.channel = channel

    async def start_send(self, channel: Optional['Channel'] = None) -> str:
        """
        Announce the selected file and start streaming it.

        Returns once the metadata is handed to the channel; chunks follow
        in a background task (see wait()).

        Raises:
            TransferError: if the transfer cannot start (session is Failed),
                or CANCELLED if cancel()/reset() ran while the metadata was
                in flight
        """
        if self._status is not TransferStatus.IDLE:
            raise TransferError(ErrorKind.TRANSFER_IN_PROGRESS,
                                f"Session is {self._status.value}, reset() first")
        if self.selected_file is None:
            raise ValueError("No file selected")

        if channel is not None:
            self.channel = channel

        self.role = ROLE_SENDER
        self.started_at = time.time()
        sender = Sender(self.chunk_size, on_progress=self._handle_send_progress)
        self.sender = sender
        self._transition(TransferStatus.SENDING)
        self._set_progress(0)

        try:
            transfer_id = await sender.begin_transfer(self.selected_file, self.channel)
        except TransferError as e:
            if self.sender is sender:
                self._fail(e.kind, e.message)
            raise

        if self.sender is not sender or self._status is not TransferStatus.SENDING:
            # Cancelled or reset while the metadata was being sent
            await sender.close()
            raise TransferError(ErrorKind.CANCELLED,
                                f"Transfer {transfer_id} stopped before streaming")

        self.transfer_id = transfer_id
        self._send_task = asyncio.create_task(self._run_send())
        return transfer_id

    async def wait(self) -> TransferStatus:
        """Wait for an outgoing transfer to finish streaming."""
        task = self._send_task
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
        return self._status

    async def cancel(self) -> bool:
        """
        Abort the active transfer.

        Returns:
            True if a transfer was cancelled
        """
        if not self._status.is_active:
            return False

        logger.info(f"Cancelling transfer {self.transfer_id}")
        await self._release()
        self._fail(ErrorKind.CANCELLED, "Cancelled")
        return self.failure is ErrorKind.CANCELLED

    def reset(self):
        """Return to Idle, dropping any residual buffer, task or file handle."""
        self._release_nowait()

        self.failure = None
        self.failure_message = None
        self.role = None
        self.transfer_id = None
        self.selected_file = None
        self.file_name = ''
        self.file_size = 0
        self.bytes_transferred = 0
        self.started_at = None
        self.finished_at = None
        self.sender = None
        self._send_task = None

        previous = self._status
        self._status = TransferStatus.IDLE
        self._resets += 1
        if self._progress != 0:
            self._set_progress(0)
        if previous is not TransferStatus.IDLE:
            logger.debug(f"Session reset from {previous.value}")
            self._emit('status', self._status)

    # === Channel events ===

    async def listen(self, channel: Optional['Channel'] = None):
        """
        Deliver inbound messages until the channel closes.

        This is the single consumer of the channel; run it once per channel.
        """
        if channel is not None:
            self.channel = channel
        channel = self.channel
        if channel is None:
            raise TransferError(ErrorKind.NO_ACTIVE_CHANNEL, "No channel to listen on")

        while True:
            message = await channel.receive()
            if message is None:
                break
            await self.on_message(message)

        async with self._inbound_lock:
            self.channel_closed()

    async def on_message(self, message):
        """Handle one inbound message. Calls are serialized."""
        async with self._inbound_lock:
            self._handle_message(message)

    def channel_closed(self):
        """The channel went away."""
        logger.info("Channel closed")
        if self._status is TransferStatus.SENDING:
            if self.sender is not None and self.sender.all_sent:
                # Everything was handed over, completion is imminent
                return
            self._release_nowait()
            self._fail(ErrorKind.CHANNEL_CLOSED, "Channel closed during send")
        elif self._status is TransferStatus.RECEIVING:
            self.receiver.abandon()
            self._fail(ErrorKind.CHANNEL_CLOSED, "Channel closed during receive")

    # === Internals ===

    def _handle_message(self, message):
        if self._status.is_terminal:
            event = ChunkCodec.decode(message)
            if isinstance(event, MetadataEvent):
                logger.warning(f"Dropping metadata for {event.metadata.transfer_id}: "
                               f"session is {self._status.value}, reset required")
            else:
                logger.debug(f"Dropping message in terminal state {self._status.value}")
            return

        if self._status is TransferStatus.SENDING:
            event = ChunkCodec.decode(message)
            if isinstance(event, MetadataEvent):
                self._reject(event.metadata.transfer_id,
                             TransferError(ErrorKind.TRANSFER_IN_PROGRESS,
                                           "Session is sending"))
            elif isinstance(event, Unrecognized):
                logger.warning(f"Ignoring unrecognized message: {event.reason}")
            else:
                logger.warning(f"Ignoring chunk {event.chunk.index} while sending")
            return

        try:
            self.receiver.on_message(message)
        except TransferError as e:
            if e.kind is ErrorKind.TRANSFER_IN_PROGRESS:
                rejected = ChunkCodec.decode(message)
                self._reject(rejected.metadata.transfer_id, e)
            elif self._status is TransferStatus.RECEIVING:
                self._fail(e.kind, e.message)
            elif self._status is TransferStatus.IDLE:
                # Only metadata can fail outside an active transfer
                self._fail_announced(ChunkCodec.decode(message).metadata, e)

    def _reject(self, transfer_id: str, error: TransferError):
        logger.warning(f"Rejected transfer {transfer_id}: {error.message}")
        self._emit('rejected', transfer_id, error.kind)

    def _new_receiver(self) -> Receiver:
        return Receiver(
            validate_geometry=self.validate_geometry,
            on_started=self._handle_receive_started,
            on_progress=self._handle_receive_progress,
            on_complete=self._handle_receive_complete,
        )

    def _describe_incoming(self, metadata: FileMetadata):
        self.role = ROLE_RECEIVER
        self.transfer_id = metadata.transfer_id
        self.file_name = metadata.name
        self.file_size = metadata.total_size
        self.bytes_transferred = 0
        self.started_at = time.time()

    def _fail_announced(self, metadata: FileMetadata, error: TransferError):
        """Fail a transfer whose metadata was refused before it started."""
        self._describe_incoming(metadata)
        self._enter_failed(error.kind, error.message)

    def _handle_receive_started(self, metadata: FileMetadata):
        self._describe_incoming(metadata)
        self._transition(TransferStatus.RECEIVING)
        if self._status is TransferStatus.RECEIVING:
            self._set_progress(0)

    def _handle_receive_progress(self, percent: int, bytes_received: int):
        if self._status is not TransferStatus.RECEIVING:
            return
        self.bytes_transferred = bytes_received
        self._set_progress(percent)

    def _handle_receive_complete(self, received: ReceivedFile):
        if self._status is not TransferStatus.RECEIVING:
            logger.debug(f"Dropping completed {received.name}: session was reset")
            return
        self._emit('file', received)
        self._complete()

    def _handle_send_progress(self, percent: int):
        if self._status is not TransferStatus.SENDING:
            return
        self.bytes_transferred = self.sender.bytes_sent
        self._set_progress(percent)

    async def _run_send(self):
        sender = self.sender
        try:
            await sender.stream_chunks()
        except TransferError as e:
            if self.sender is sender:
                self._fail(e.kind, e.message)
            return

        if self.sender is sender and self._status is TransferStatus.SENDING:
            logger.info(f"Sent {sender.metadata.name} ({sender.bytes_sent:,} bytes)")
            self._complete()

    def _complete(self):
        if not self._status.is_active:
            # A listener reset the session while it was being completed
            logger.debug(f"Not completing in state {self._status.value}")
            return
        self.finished_at = time.time()
        self._transition(TransferStatus.COMPLETE)

    def _fail(self, kind: ErrorKind, message: Optional[str] = None):
        if not self._status.is_active:
            logger.debug(f"Ignoring {kind.value} in state {self._status.value}")
            return
        self._enter_failed(kind, message)

    def _enter_failed(self, kind: ErrorKind, message: Optional[str]):
        self.failure = kind
        self.failure_message = message or kind.value
        self.finished_at = time.time()
        logger.warning(f"Transfer {self.transfer_id} failed: {kind.value} ({self.failure_message})")

        resets = self._resets
        self._emit('failed', kind)
        if self._resets != resets:
            logger.debug(f"Session reset while failing {self.transfer_id}")
            return
        self._transition(TransferStatus.FAILED)

    def _transition(self, new_status: TransferStatus):
        if new_status not in _TRANSITIONS[self._status]:
            raise RuntimeError(f"Invalid transition {self._status.value} -> {new_status.value}")
        logger.debug(f"Status {self._status.value} -> {new_status.value}")
        self._status = new_status
        self._emit('status', new_status)

    def _set_progress(self, percent: int):
        self._progress = percent
        self._emit('progress', percent)

    def _release_nowait(self):
        task, self._send_task = self._send_task, None
        if task is not None and not task.done():
            task.cancel()

        sender = self.sender
        if sender is not None and sender.is_open:
            # A task cancelled before its first step never runs its cleanup
            closing = asyncio.ensure_future(sender.close())
            self._closing.add(closing)
            closing.add_done_callback(self._closing.discard)

        self.receiver.abandon()

    async def _release(self):
        task = self._send_task
        self._release_nowait()
        if task is not None and task is not asyncio.current_task():
            with suppress(asyncio.CancelledError):
                await task
        if self.sender is not None:
            await self.sender.close()

    def snapshot(self) -> Dict[str, Any]:
        """Convert to dictionary for presentation."""
        return {
            'status': self._status.value,
            'progress': self._progress,
            'role': self.role,
            'transfer_id': self.transfer_id,
            'file_name': self.file_name,
            'file_size': self.file_size,
            'bytes_transferred': self.bytes_transferred,
            'failure': self.failure.value if self.failure else None,
            'elapsed_seconds': self.elapsed_seconds,
            'speed_bytes_per_sec': self.speed_bytes_per_sec,
            'sender': self.sender.get_stats() if self.sender else None,
            'receiver': self.receiver.get_stats(),
        }
