"""
File Sink

Writes completed transfers to a download directory.

Files are written to a temp name first and renamed into place, so a
half-written file never shows up under its final name:
```
downloads/
├── report.pdf
├── report (1).pdf    # second file with the same name
└── .partial/         # in-progress writes
```
"""

import os
import logging
from pathlib import Path
from typing import List

import aiofiles
import aiofiles.os

from ..transfer.models import ReceivedFile

logger = logging.getLogger(__name__)


def safe_file_name(name: str) -> str:
    """Reduce a peer-supplied name to a bare, non-empty file name."""
    base = name.replace('\\', '/').split('/')[-1]
    base = base.replace('\x00', '').strip()
    if base in ('', '.', '..'):
        return 'received.bin'
    return base


class FileSink:
    """
    Persists received files and keeps a history of them.
    """

    def __init__(self, download_dir: Path):
        self.download_dir = Path(download_dir)
        self.temp_dir = self.download_dir / '.partial'
        self.received: List[ReceivedFile] = []

        self.download_dir.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    def _target_path(self, name: str) -> Path:
        """First free path for `name`, adding ' (n)' before the suffix."""
        candidate = self.download_dir / name
        stem, suffix = os.path.splitext(name)
        counter = 1
        while candidate.exists():
            candidate = self.download_dir / f"{stem} ({counter}){suffix}"
            counter += 1
        return candidate

    async def write(self, received: ReceivedFile) -> ReceivedFile:
        """
        Write a received file to disk.

        Returns:
            The record with its final path filled in
        """
        name = safe_file_name(received.name)
        temp_path = self.temp_dir / f"{received.transfer_id or name}.tmp"

        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                await f.write(received.data)
            target = self._target_path(name)
            await aiofiles.os.rename(temp_path, target)
        except OSError:
            if temp_path.exists():
                await aiofiles.os.remove(temp_path)
            raise

        record = ReceivedFile(
            name=received.name,
            data=b'',
            size=received.size,
            transfer_id=received.transfer_id,
            path=target,
        )
        self.received.append(record)
        logger.info(f"Saved {received.name} to {target}")
        return record

    def get_stats(self) -> dict:
        """Get sink statistics."""
        return {
            'files': len(self.received),
            'total_bytes': sum(r.size for r in self.received),
            'download_dir': str(self.download_dir),
        }
