"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .transfer.codec import MAX_MESSAGE_SIZE
from .transfer.models import CHUNK_SIZE

ENV_PREFIX = 'PEERDROP_'


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Config:
    """
    PeerDrop Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (PEERDROP_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 8470
    connect_timeout: float = 10.0

    # Storage
    download_dir: Path = field(default_factory=lambda: Path('./downloads'))

    # Protocol
    chunk_size: int = CHUNK_SIZE
    max_message_size: int = MAX_MESSAGE_SIZE
    validate_geometry: bool = True

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.max_message_size < self.chunk_size:
            raise ValueError("max_message_size must be at least chunk_size")

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv(f'{ENV_PREFIX}HOST', config.host)
        config.port = int(os.getenv(f'{ENV_PREFIX}PORT', config.port))
        config.connect_timeout = float(
            os.getenv(f'{ENV_PREFIX}CONNECT_TIMEOUT', config.connect_timeout)
        )

        # Storage
        download_dir = os.getenv(f'{ENV_PREFIX}DOWNLOAD_DIR')
        if download_dir:
            config.download_dir = Path(download_dir)

        # Protocol
        config.chunk_size = int(os.getenv(f'{ENV_PREFIX}CHUNK_SIZE', config.chunk_size))
        config.max_message_size = int(
            os.getenv(f'{ENV_PREFIX}MAX_MESSAGE_SIZE', config.max_message_size)
        )
        config.validate_geometry = _env_bool(
            f'{ENV_PREFIX}VALIDATE_GEOMETRY', config.validate_geometry
        )

        # Logging
        config.log_level = os.getenv(f'{ENV_PREFIX}LOG_LEVEL', config.log_level)

        config.__post_init__()
        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Network
        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)

        # Storage
        if 'download_dir' in data:
            config.download_dir = Path(data['download_dir'])

        # Protocol
        config.chunk_size = data.get('chunk_size', config.chunk_size)
        config.max_message_size = data.get('max_message_size', config.max_message_size)
        config.validate_geometry = data.get('validate_geometry', config.validate_geometry)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        config.__post_init__()
        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'connect_timeout': self.connect_timeout,
            'download_dir': str(self.download_dir),
            'chunk_size': self.chunk_size,
            'max_message_size': self.max_message_size,
            'validate_geometry': self.validate_geometry,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and Path(config_path).exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in ['host', 'port', 'connect_timeout', 'download_dir', 'chunk_size',
                'max_message_size', 'validate_geometry', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    config.__post_init__()
    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 8470,
  "connect_timeout": 10.0,
  "download_dir": "./downloads",
  "chunk_size": 1048576,
  "max_message_size": 67108864,
  "validate_geometry": true,
  "log_level": "INFO"
}
"""
