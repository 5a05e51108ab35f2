"""Asyncio client for the MPD protocol, with an MCP server front end."""

from .client import MPDClient, StateEvent
from .config import ClientConfig, fixed_delay
from .errors import (
    CommandTimeoutError,
    ConnectionLostError,
    MalformedLineError,
    MPDError,
    ProtocolError,
)

__version__ = "0.1.0"
