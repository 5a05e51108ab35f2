"""Socket transport."""

from .connection import ConnectionState, MPDConnection
