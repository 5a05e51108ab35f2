"""Client configuration and reconnect policies."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6600
DEFAULT_RECONNECT_DELAY = 1.0  # seconds between connection attempts
RECV_BUFFER = 65536

# Consecutive failure count -> seconds to wait before the next attempt
ReconnectPolicy = Callable[[int], float]


def fixed_delay(seconds: float) -> ReconnectPolicy:
    """Build a policy that always waits ``seconds``, however many attempts failed."""
    if seconds < 0:
        raise ValueError(f"Reconnect delay must be >= 0, got {seconds}")

    def policy(failures: int) -> float:
        return seconds

    return policy


@dataclass
class ClientConfig:
    """Settings for :class:`mpd_mcp.client.MPDClient`.

    Attributes:
        host: Server hostname.
        port: Server TCP port.
        timeout: Seconds to wait for a command reply, or None to wait until
            the connection drops.
        connect_timeout: Seconds ``connect()`` waits for the handshake, or
            None to wait indefinitely while the client keeps retrying.
        reconnect_delay: Fixed pause between connection attempts.
        idle: Keep the connection in wait-mode between commands so
            subsystem changes are reported.
        escape_backslashes: Escape ``\\`` inside quoted arguments as well as
            ``"``.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout: float | None = None
    connect_timeout: float | None = None
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    idle: bool = True
    escape_backslashes: bool = True

    def __post_init__(self) -> None:
        if not 0 < self.port <= 0xFFFF:
            raise ValueError(f"Port must be 1-65535, got {self.port}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout}")

    @property
    def reconnect_policy(self) -> ReconnectPolicy:
        return fixed_delay(self.reconnect_delay)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ClientConfig:
        """Build a config from ``MPD_HOST``, ``MPD_PORT`` and ``MPD_TIMEOUT``."""
        env = os.environ if environ is None else environ
        timeout = env.get("MPD_TIMEOUT")
        return cls(
            host=env.get("MPD_HOST", DEFAULT_HOST),
            port=int(env.get("MPD_PORT", DEFAULT_PORT)),
            timeout=float(timeout) if timeout else None,
        )
