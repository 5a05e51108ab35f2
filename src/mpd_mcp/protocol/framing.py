"""Response framer for the MPD line protocol.

The server answers every command with one of::

    OK MPD 0.23.5                          version banner, sent once on connect
    key: value ... OK                      success, zero or more data lines
    ACK [50@0] {play} No such song         failure, a single line

``parse_response`` splits a chunk of text into classified frames and returns
whatever trailing text does not yet form a complete reply. Only lines that
end with ``\\n`` are classified, so feeding a stream in one piece or in any
number of arbitrary pieces yields the same frames.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

TERMINATOR = "OK"
VERSION_RE = re.compile(r"^OK (\S+) (\S.*)$")
ERROR_RE = re.compile(r"^ACK \[(\d+)@(\d+)\] \{(.*?)\} ?(.*)$")


@dataclass(frozen=True)
class VersionFrame:
    """Handshake banner carrying the server's protocol version."""

    version: str


@dataclass(frozen=True)
class ErrorFrame:
    """An ``ACK`` line."""

    message: str
    code: int | None = None
    index: int | None = None
    command: str = ""


@dataclass(frozen=True)
class DataFrame:
    """The lines of a successful reply, without the ``OK`` terminator."""

    payload: str

    def __repr__(self) -> str:
        lines = self.payload.count("\n") + 1 if self.payload else 0
        return f"DataFrame(lines={lines})"


Frame = Union[VersionFrame, ErrorFrame, DataFrame]


def _parse_error(line: str) -> ErrorFrame:
    match = ERROR_RE.match(line)
    if match is None:
        # Unexpected ACK layout; keep the text so the caller still sees it
        return ErrorFrame(message=line[len("ACK "):])
    code, index, command, message = match.groups()
    return ErrorFrame(
        message=message,
        code=int(code),
        index=int(index),
        command=command,
    )


def parse_response(data: str) -> tuple[list[Frame], str]:
    """Split ``data`` into complete frames and an unconsumed remainder.

    Args:
        data: Previously unconsumed remainder followed by newly received text.

    Returns:
        ``(frames, remainder)``. ``remainder`` holds the lines of a reply that
        has not been terminated yet, verbatim, and must be prepended to the
        next chunk.
    """
    frames: list[Frame] = []
    lines = data.split("\n")
    block_start = 0

    # The last element is whatever followed the final newline, never complete
    for i, line in enumerate(lines[:-1]):
        if line == TERMINATOR:
            frames.append(DataFrame(payload="\n".join(lines[block_start:i])))
            block_start = i + 1
            continue

        version = VERSION_RE.match(line)
        if version:
            frames.append(VersionFrame(version=version.group(2)))
            block_start = i + 1
        elif line.startswith("ACK "):
            frames.append(_parse_error(line))
            block_start = i + 1

    return frames, "\n".join(lines[block_start:])


class ResponseFramer:
    """Stateful wrapper around :func:`parse_response` owning the remainder.

    Usage::

        framer = ResponseFramer()
        for frame in framer.feed(text):
            ...
    """

    def __init__(self) -> None:
        self._remainder = ""

    @property
    def remainder(self) -> str:
        return self._remainder

    def feed(self, data: str) -> list[Frame]:
        frames, self._remainder = parse_response(self._remainder + data)
        return frames

    def reset(self) -> None:
        self._remainder = ""
