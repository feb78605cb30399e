"""Tests for the chunk sender."""

import pytest

from peerdrop.transfer.codec import ChunkCodec
from peerdrop.transfer.errors import ErrorKind, TransferError
from peerdrop.transfer.models import CHUNK_SIZE
from peerdrop.transfer.sender import Sender
from tests.helpers import RecordingChannel


class TestSender:

    @pytest.mark.asyncio
    async def test_metadata_then_chunks_in_order(self, make_file, recording_channel):
        path = make_file(int(2.5 * CHUNK_SIZE))
        progress = []
        sender = Sender(on_progress=progress.append)

        transfer_id = await sender.begin_transfer(path, recording_channel)
        await sender.stream_chunks()

        first = ChunkCodec.decode(recording_channel.sent[0])
        assert first.metadata.transfer_id == transfer_id
        assert first.metadata.chunk_count == 3
        assert first.metadata.name == 'payload.bin'

        chunks = [ChunkCodec.decode(m).chunk for m in recording_channel.chunks]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert [len(c.payload) for c in chunks] == [CHUNK_SIZE, CHUNK_SIZE, CHUNK_SIZE // 2]
        assert [c.is_last for c in chunks] == [False, False, True]
        assert b''.join(c.payload for c in chunks) == path.read_bytes()
        assert progress == [34, 67, 100]
        assert sender.all_sent

    @pytest.mark.asyncio
    async def test_zero_byte_file_sends_one_empty_chunk(self, make_file, recording_channel):
        path = make_file(0, 'empty.txt')
        progress = []
        sender = Sender(on_progress=progress.append)

        await sender.begin_transfer(path, recording_channel)
        await sender.stream_chunks()

        meta = ChunkCodec.decode(recording_channel.sent[0]).metadata
        assert meta.total_size == 0
        assert meta.chunk_count == 1

        assert len(recording_channel.chunks) == 1
        chunk = ChunkCodec.decode(recording_channel.chunks[0]).chunk
        assert chunk.index == 0
        assert chunk.is_last
        assert chunk.payload == b''
        assert progress == [100]

    @pytest.mark.asyncio
    async def test_name_override(self, make_file, recording_channel):
        path = make_file(10)
        sender = Sender()
        await sender.begin_transfer(path, recording_channel, name='renamed.bin')
        assert ChunkCodec.decode(recording_channel.sent[0]).metadata.name == 'renamed.bin'
        await sender.close()

    @pytest.mark.asyncio
    async def test_no_channel(self, make_file):
        with pytest.raises(TransferError) as exc_info:
            await Sender().begin_transfer(make_file(10), None)
        assert exc_info.value.kind is ErrorKind.NO_ACTIVE_CHANNEL

    @pytest.mark.asyncio
    async def test_closed_channel(self, make_file):
        channel = RecordingChannel()
        await channel.close()
        with pytest.raises(TransferError) as exc_info:
            await Sender().begin_transfer(make_file(10), channel)
        assert exc_info.value.kind is ErrorKind.NO_ACTIVE_CHANNEL
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_missing_file_is_read_failure(self, tmp_path, recording_channel):
        with pytest.raises(TransferError) as exc_info:
            await Sender().begin_transfer(tmp_path / 'nope.bin', recording_channel)
        assert exc_info.value.kind is ErrorKind.READ_FAILURE

    @pytest.mark.asyncio
    async def test_file_shrinking_mid_transfer_is_read_failure(self, make_file, recording_channel):
        path = make_file(64 * 1024)
        sender = Sender(chunk_size=1024)
        await sender.begin_transfer(path, recording_channel)

        with open(path, 'r+b') as f:
            f.truncate(2048)

        with pytest.raises(TransferError) as exc_info:
            await sender.stream_chunks()

        assert exc_info.value.kind is ErrorKind.READ_FAILURE
        assert len(recording_channel.chunks) < 64
        assert sender._file is None

    @pytest.mark.asyncio
    async def test_stream_after_close_is_read_failure(self, make_file, recording_channel):
        sender = Sender(chunk_size=100)
        await sender.begin_transfer(make_file(250), recording_channel)
        await sender.close()

        with pytest.raises(TransferError) as exc_info:
            await sender.stream_chunks()

        assert exc_info.value.kind is ErrorKind.READ_FAILURE
        assert recording_channel.chunks == []
        assert sender.get_stats()['chunks_sent'] == 0

    @pytest.mark.asyncio
    async def test_channel_drop_mid_transfer(self, make_file):
        channel = RecordingChannel(close_after=3)
        sender = Sender(chunk_size=100)
        await sender.begin_transfer(make_file(1000), channel)

        with pytest.raises(TransferError) as exc_info:
            await sender.stream_chunks()

        assert exc_info.value.kind is ErrorKind.CHANNEL_CLOSED
        assert sender.chunks_sent == 2
        assert not sender.all_sent
        assert sender._file is None

    @pytest.mark.asyncio
    async def test_sender_is_single_use(self, make_file, recording_channel):
        path = make_file(10)
        sender = Sender()
        await sender.begin_transfer(path, recording_channel)
        with pytest.raises(TransferError) as exc_info:
            await sender.begin_transfer(path, recording_channel)
        assert exc_info.value.kind is ErrorKind.TRANSFER_IN_PROGRESS
        await sender.close()

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            Sender(chunk_size=0)
