"""Tests for chunk geometry and data model helpers."""

import pytest

from peerdrop.transfer.models import (
    CHUNK_SIZE, FileMetadata, Chunk, TransferStatus, expected_chunk_length,
    format_file_size, generate_transfer_id, get_chunk_count, progress_percent,
)


class TestChunkGeometry:

    @pytest.mark.parametrize("size,chunk_size,expected", [
        (0, 1024, 1),
        (1, 1024, 1),
        (1024, 1024, 1),
        (1025, 1024, 2),
        (int(2.5 * CHUNK_SIZE), CHUNK_SIZE, 3),
        (3 * CHUNK_SIZE, CHUNK_SIZE, 3),
    ])
    def test_chunk_count(self, size, chunk_size, expected):
        assert get_chunk_count(size, chunk_size) == expected

    def test_chunk_lengths_sum_to_total_size(self):
        for size in (0, 1, 999, 1000, 1001, 12345):
            chunk_size = 1000
            count = get_chunk_count(size, chunk_size)
            lengths = [expected_chunk_length(i, size, chunk_size) for i in range(count)]
            assert sum(lengths) == size
            assert all(length == chunk_size for length in lengths[:-1])

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            get_chunk_count(10, 0)

    def test_metadata_consistency(self):
        meta = FileMetadata.for_file('t1', 'a.bin', 2500, chunk_size=1000)
        assert meta.chunk_count == 3
        assert meta.is_consistent

        bad = FileMetadata('t1', 'a.bin', 2500, 1000, 2)
        assert not bad.is_consistent


class TestProgress:

    def test_three_chunks(self):
        assert [progress_percent(i, 3) for i in range(3)] == [34, 67, 100]

    def test_single_chunk(self):
        assert progress_percent(0, 1) == 100

    def test_only_last_chunk_reaches_100(self):
        count = 1000
        values = [progress_percent(i, count) for i in range(count)]
        assert values == sorted(values)
        assert values.count(100) == 1

    def test_near_end_stays_below_100(self):
        assert progress_percent(990, 1000) == 99
        assert progress_percent(998, 1000) == 99
        assert progress_percent(999, 1000) == 100


def test_chunk_is_last():
    assert Chunk('t', 2, 3, b'x').is_last
    assert not Chunk('t', 1, 3, b'x').is_last


def test_status_flags():
    assert TransferStatus.COMPLETE.is_terminal
    assert TransferStatus.FAILED.is_terminal
    assert TransferStatus.SENDING.is_active
    assert not TransferStatus.IDLE.is_active


def test_transfer_ids_are_unique():
    ids = {generate_transfer_id() for _ in range(1000)}
    assert len(ids) == 1000


@pytest.mark.parametrize("size,text", [
    (512, "512 bytes"),
    (2048, "2.0 KB"),
    (int(2.5 * 1024 * 1024), "2.5 MB"),
    (3 * 1024 ** 3, "3.0 GB"),
])
def test_format_file_size(size, text):
    assert format_file_size(size) == text
