"""Error hierarchy for the MPD client."""

from __future__ import annotations


class MPDError(Exception):
    """Base class for every error raised by this package."""


class ProtocolError(MPDError):
    """The server rejected a command with an ``ACK`` line.

    Example line::

        ACK [50@0] {play} No such song
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        index: int | None = None,
        command: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.index = index
        self.command = command

    def __repr__(self) -> str:
        return (
            f"ProtocolError(code={self.code}, index={self.index}, "
            f"command={self.command!r}, message={self.message!r})"
        )


class ConnectionLostError(MPDError, ConnectionError):
    """The socket closed or failed while a request was outstanding."""


class MalformedLineError(MPDError, ValueError):
    """A response line did not have the ``key: value`` shape."""

    def __init__(self, line: str) -> None:
        super().__init__(f"Could not parse entry {line!r}")
        self.line = line


class CommandTimeoutError(MPDError, TimeoutError):
    """No reply arrived for a command within the configured bound."""

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(f"No reply to {command!r} within {timeout}s")
        self.command = command
        self.timeout = timeout
