"""
Storage Module - Received File Persistence
"""

from .sink import FileSink, safe_file_name

__all__ = [
    'FileSink',
    'safe_file_name',
]
