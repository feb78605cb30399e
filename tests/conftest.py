"""Shared fixtures for transfer tests."""

import os
from pathlib import Path
from typing import Callable

import pytest

from tests.helpers import RecordingChannel


@pytest.fixture
def recording_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[..., Path]:
    """Create a file with `size` bytes of random-looking content."""

    def _make(size: int, name: str = 'payload.bin') -> Path:
        path = tmp_path / name
        pattern = os.urandom(251)
        repeats = size // len(pattern) + 1
        path.write_bytes((pattern * repeats)[:size])
        return path

    return _make
