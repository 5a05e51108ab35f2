"""TCP connection to an MPD server with unconditional reconnection.

One task owns the socket. It connects, feeds received text through a
:class:`~mpd_mcp.protocol.framing.ResponseFramer`, and on any failure reports
the loss, waits according to the reconnect policy and starts over. It never
gives up until :meth:`MPDConnection.close` is called.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from enum import Enum
from typing import Callable

from ..config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_RECONNECT_DELAY,
    RECV_BUFFER,
    ReconnectPolicy,
    fixed_delay,
)
from ..errors import ConnectionLostError
from ..protocol.framing import DataFrame, ErrorFrame, Frame, ResponseFramer, VersionFrame

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    READY = "ready"


class MPDConnection:
    """Owns the socket lifecycle and turns received bytes into frames.

    Args:
        host: Server hostname.
        port: Server TCP port.
        on_frame: Called with every data or error frame, in arrival order.
        on_ready: Called with the server version once the banner arrives.
        on_lost: Called with a :class:`ConnectionLostError` after the socket
            closes or fails, before the next attempt starts.
        on_connecting: Called at the start of every connection attempt.
        reconnect_policy: Maps the number of consecutive failed attempts to
            the delay before the next one.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        *,
        on_frame: Callable[[Frame], None],
        on_ready: Callable[[str], None],
        on_lost: Callable[[ConnectionLostError], None],
        on_connecting: Callable[[], None] | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._on_frame = on_frame
        self._on_ready = on_ready
        self._on_lost = on_lost
        self._on_connecting = on_connecting
        self._policy = reconnect_policy or fixed_delay(DEFAULT_RECONNECT_DELAY)

        self._state = ConnectionState.DISCONNECTED
        self._framer = ResponseFramer()
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task | None = None
        self._closing = False
        self._reset_reason: str | None = None
        self._server_version: str | None = None
        self._attempts = 0

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def server_version(self) -> str | None:
        return self._server_version

    @property
    def attempts(self) -> int:
        """Number of connection attempts started so far."""
        return self._attempts

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Launch the connection loop. Does nothing if it is already running."""
        if self.running:
            return
        self._closing = False
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"mpd-connection-{self._host}:{self._port}"
        )

    async def close(self) -> None:
        """Stop reconnecting and close the socket."""
        self._closing = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._state = ConnectionState.DISCONNECTED
        logger.info("Closed connection to %s:%d", self._host, self._port)

    def reset(self, reason: str) -> None:
        """Abort the current socket; the loop reconnects as after any failure."""
        writer = self._writer
        if writer is None:
            return
        logger.warning("Resetting connection to %s:%d: %s", self._host, self._port, reason)
        self._reset_reason = reason
        writer.transport.abort()

    def write_line(self, line: str) -> None:
        """Queue one protocol line for sending.

        Raises:
            ConnectionLostError: No handshake has completed on a live socket.
        """
        writer = self._writer
        if writer is None or self._state is not ConnectionState.READY:
            raise ConnectionLostError(f"Not connected to {self._host}:{self._port}")
        logger.debug("> %s", line)
        writer.write((line + "\n").encode("utf-8"))

    async def drain(self) -> None:
        """Wait until queued lines have been handed to the OS."""
        writer = self._writer
        if writer is None:
            raise ConnectionLostError(f"Not connected to {self._host}:{self._port}")
        try:
            await writer.drain()
        except OSError as e:
            raise ConnectionLostError(f"Write failed: {e}") from e

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        failures = 0
        while not self._closing:
            self._attempts += 1
            self._state = ConnectionState.CONNECTING
            if self._on_connecting is not None:
                self._notify(self._on_connecting)

            try:
                reader, writer = await asyncio.open_connection(self._host, self._port)
            except OSError as e:
                failures += 1
                self._lost(ConnectionLostError(
                    f"Could not connect to {self._host}:{self._port}: {e}"
                ))
            else:
                logger.info("Connected to %s:%d", self._host, self._port)
                self._writer = writer
                self._reset_reason = None
                self._state = ConnectionState.AWAITING_HANDSHAKE
                try:
                    error = await self._read_loop(reader)
                finally:
                    self._writer = None
                    writer.close()
                    try:
                        await writer.wait_closed()
                    except OSError as e:
                        logger.debug("Error while closing socket: %s", e)
                failures = 1 if self._server_version is not None else failures + 1
                self._lost(error)

            if self._closing:
                break
            delay = self._policy(failures)
            logger.warning(
                "Reconnecting to %s:%d in %.1fs", self._host, self._port, delay
            )
            await asyncio.sleep(delay)

    async def _read_loop(self, reader: asyncio.StreamReader) -> ConnectionLostError:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._framer.reset()
        self._server_version = None
        while True:
            try:
                data = await reader.read(RECV_BUFFER)
            except OSError as e:
                return ConnectionLostError(f"Socket error: {e}")
            if not data:
                return ConnectionLostError(self._reset_reason or "Socket unexpectedly closed")
            for frame in self._framer.feed(decoder.decode(data)):
                self._dispatch(frame)

    def _dispatch(self, frame: Frame) -> None:
        match frame:
            case VersionFrame(version=version):
                self._server_version = version
                self._state = ConnectionState.READY
                logger.info("MPD server version %s", version)
                self._notify(self._on_ready, version)
            case DataFrame() | ErrorFrame():
                logger.debug("< %r", frame)
                self._notify(self._on_frame, frame)
            case _:
                raise TypeError(f"Unknown frame type: {frame!r}")

    def _lost(self, error: ConnectionLostError) -> None:
        self._state = ConnectionState.DISCONNECTED
        if self._closing:
            return
        logger.warning("Connection to %s:%d lost: %s", self._host, self._port, error)
        self._notify(self._on_lost, error)

    @staticmethod
    def _notify(callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Connection callback %r failed", callback)
