"""
Configuration Management

Handles loading configuration from environment variables and config files.

Every setting has a compiled-in default, so neither a config file nor any
environment variable is needed to run the client or the server.
"""

import os
import re
import json
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Ports are deployment configuration, not protocol constants
DEFAULT_PORT = 28785

# Receive buffer bounds (bytes)
DEFAULT_BUFSIZE = 4096
MIN_BUFSIZE = 10
MAX_BUFSIZE = 99999

# Pending-connection queue for listen()
BACKLOG = 10

# Client read/send chunk; never visible on the wire
SEND_CHUNK_SIZE = 1000

# The server's positional buffer argument must be shorter than this
_MAX_BUFSIZE_ARG_LEN = 6

_ATOI_PATTERN = re.compile(r'\s*([+-]?\d+)')

# Config field -> environment variable
_ENV_VARS = {
    'host': 'FILERELAY_HOST',
    'server_port': 'FILERELAY_SERVER_PORT',
    'client_port': 'FILERELAY_CLIENT_PORT',
    'bufsize': 'FILERELAY_BUFSIZE',
    'log_level': 'FILERELAY_LOG_LEVEL',
}


def _atoi(text: str) -> int:
    """Parse a leading integer the way C's atoi does (0 when none)."""
    match = _ATOI_PATTERN.match(text)
    return int(match.group(1)) if match else 0


def parse_bufsize(arg: Optional[str]) -> int:
    """
    Resolve the server's optional buffer-size argument.

    The argument is honored only when it is shorter than six characters
    and its leading integer is greater than 9; otherwise the default is
    used. This keeps the effective size within MIN_BUFSIZE..MAX_BUFSIZE.

    Examples:
        parse_bufsize('10')      -> 10
        parse_bufsize('9')       -> 4096
        parse_bufsize('123456')  -> 4096
        parse_bufsize('64k')     -> 64
    """
    if arg is None or len(arg) >= _MAX_BUFSIZE_ARG_LEN:
        return DEFAULT_BUFSIZE
    value = _atoi(arg)
    return value if value >= MIN_BUFSIZE else DEFAULT_BUFSIZE


@dataclass
class Config:
    """
    Relay configuration.

    Configuration priority (highest to lowest):
    1. Command-line options
    2. Environment variables (FILERELAY_*)
    3. Config file (JSON)
    4. Default values
    """
    # Network
    host: Optional[str] = None  # None binds the wildcard address
    server_port: int = DEFAULT_PORT
    client_port: int = DEFAULT_PORT
    backlog: int = BACKLOG

    # Transfer
    bufsize: int = DEFAULT_BUFSIZE
    send_chunk_size: int = SEND_CHUNK_SIZE

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('FILERELAY_HOST', config.host)
        config.server_port = int(os.getenv('FILERELAY_SERVER_PORT', config.server_port))
        config.client_port = int(os.getenv('FILERELAY_CLIENT_PORT', config.client_port))

        # Transfer
        bufsize = os.getenv('FILERELAY_BUFSIZE')
        if bufsize:
            config.bufsize = parse_bufsize(bufsize)

        # Logging
        config.log_level = os.getenv('FILERELAY_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Network
        config.host = data.get('host', config.host)
        config.server_port = data.get('server_port', config.server_port)
        config.client_port = data.get('client_port', config.client_port)
        config.backlog = data.get('backlog', config.backlog)

        # Transfer
        if 'bufsize' in data:
            config.bufsize = parse_bufsize(str(data['bufsize']))
        chunk_size = data.get('send_chunk_size', config.send_chunk_size)
        if chunk_size >= 1:
            config.send_chunk_size = chunk_size

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'server_port': self.server_port,
            'client_port': self.client_port,
            'backlog': self.backlog,
            'bufsize': self.bufsize,
            'send_chunk_size': self.send_chunk_size,
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
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    env_config = Config.from_env()

    # Merge (env takes precedence whenever set)
    for key, env_var in _ENV_VARS.items():
        if os.getenv(env_var) is not None:
            setattr(config, key, getattr(env_config, key))

    return config
