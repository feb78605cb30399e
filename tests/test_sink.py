"""Tests for the received file sink."""

import pytest

from peerdrop.storage import FileSink, safe_file_name
from peerdrop.transfer.models import ReceivedFile


@pytest.mark.parametrize("name,expected", [
    ('report.pdf', 'report.pdf'),
    ('../../etc/passwd', 'passwd'),
    ('C:\\Users\\me\\photo.jpg', 'photo.jpg'),
    ('', 'received.bin'),
    ('..', 'received.bin'),
    ('dir/', 'received.bin'),
])
def test_safe_file_name(name, expected):
    assert safe_file_name(name) == expected


class TestFileSink:

    @pytest.mark.asyncio
    async def test_write_and_history(self, tmp_path):
        sink = FileSink(tmp_path / 'downloads')
        record = await sink.write(ReceivedFile('a.txt', b'hello', 5, transfer_id='t1'))

        assert record.path == tmp_path / 'downloads' / 'a.txt'
        assert record.path.read_bytes() == b'hello'
        assert sink.received == [record]
        assert sink.get_stats()['total_bytes'] == 5
        assert list(sink.temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_name_collision_gets_suffix(self, tmp_path):
        sink = FileSink(tmp_path)
        first = await sink.write(ReceivedFile('a.txt', b'1', 1, transfer_id='t1'))
        second = await sink.write(ReceivedFile('a.txt', b'2', 1, transfer_id='t2'))

        assert first.path.name == 'a.txt'
        assert second.path.name == 'a (1).txt'
        assert second.path.read_bytes() == b'2'

    @pytest.mark.asyncio
    async def test_traversal_stays_in_download_dir(self, tmp_path):
        sink = FileSink(tmp_path / 'dl')
        record = await sink.write(ReceivedFile('../escape.txt', b'x', 1, transfer_id='t1'))
        assert record.path.parent == tmp_path / 'dl'

    @pytest.mark.asyncio
    async def test_empty_file(self, tmp_path):
        sink = FileSink(tmp_path)
        record = await sink.write(ReceivedFile('empty', b'', 0, transfer_id='t1'))
        assert record.path.read_bytes() == b''
