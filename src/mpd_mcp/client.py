"""Asyncio MPD client.

Wires the connection, correlator and idle coordinator together and exposes
the public command API plus change notifications.

Usage::

    async with MPDClient("localhost", 6600) as client:
        client.on_system(lambda name: print("changed", name))
        status = await client.get_status()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Sequence

from .config import ClientConfig, ReconnectPolicy
from .errors import CommandTimeoutError, ConnectionLostError
from .protocol.commands import IDLE, NOIDLE, Command, serialize_command, serialize_command_list
from .protocol.correlator import Correlator, PendingRequest
from .protocol.framing import DataFrame, ErrorFrame, Frame
from .protocol.idle import IdleCoordinator, IdleState
from .protocol.parser import parse_key_value, parse_records
from .transport.connection import ConnectionState, MPDConnection

logger = logging.getLogger(__name__)

Record = dict[str, str]


class StateEvent(Enum):
    CONNECTING = "connecting"
    READY = "ready"
    ERROR = "error"


def _unsubscriber(handlers: list, entry: Any) -> Callable[[], None]:
    def unsubscribe() -> None:
        if entry in handlers:
            handlers.remove(entry)

    return unsubscribe


class MPDClient:
    """Client for a single MPD connection.

    Commands are issued one at a time; concurrent callers queue internally
    and receive replies in the order their commands were written. Between
    commands the connection is parked in wait-mode so subsystem changes are
    reported through :meth:`on_system`.

    Args:
        host: Overrides ``config.host``.
        port: Overrides ``config.port``.
        config: Client settings; defaults to :class:`ClientConfig`.
        reconnect_policy: Overrides the fixed delay from ``config``.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        *,
        config: ClientConfig | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        if host is not None or port is not None:
            self._config = replace(
                self._config,
                host=host if host is not None else self._config.host,
                port=port if port is not None else self._config.port,
            )
        self._reconnect_policy = reconnect_policy or self._config.reconnect_policy

        self._connection: MPDConnection | None = None
        self._correlator = Correlator()
        self._idle = IdleCoordinator(enabled=self._config.idle)
        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._closed = True
        self._waiting = 0  # callers blocked on the command lock
        self._losses = 0

        self._system_handlers: list[tuple[str | None, Callable]] = []
        self._state_handlers: list[Callable] = []
        self._ready_handlers: list[Callable] = []
        self._background: set[asyncio.Future] = set()

    def __repr__(self) -> str:
        return (
            f"MPDClient(host={self._config.host!r}, port={self._config.port}, "
            f"state={self.connection_state.value})"
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return not self._closed and self._ready.is_set()

    @property
    def server_version(self) -> str | None:
        if self._connection is None:
            return None
        return self._connection.server_version

    @property
    def connection_state(self) -> ConnectionState:
        if self._connection is None:
            return ConnectionState.DISCONNECTED
        return self._connection.state

    @property
    def idle_state(self) -> IdleState:
        return self._idle.state

    @property
    def reconnect_attempts(self) -> int:
        return self._connection.attempts if self._connection is not None else 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, host: str | None = None, port: int | None = None) -> str | None:
        """Connect and wait for the server's version banner.

        The client keeps reconnecting in the background after this returns.

        Returns:
            The server's protocol version.

        Raises:
            ConnectionLostError: ``config.connect_timeout`` elapsed without a
                handshake. The client is closed in that case.
        """
        address = (
            host if host is not None else self._config.host,
            port if port is not None else self._config.port,
        )
        if address != (self._config.host, self._config.port):
            await self.close()
            self._config = replace(self._config, host=address[0], port=address[1])

        if self._connection is None or not self._connection.running:
            self._closed = False
            self._ready.clear()
            self._connection = MPDConnection(
                self._config.host,
                self._config.port,
                on_frame=self._handle_frame,
                on_ready=self._handle_ready,
                on_lost=self._handle_lost,
                on_connecting=self._handle_connecting,
                reconnect_policy=self._reconnect_policy,
            )
            self._connection.start()

        try:
            await self._wait_ready(self._config.connect_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise ConnectionLostError(
                f"No handshake from {address[0]}:{address[1]} "
                f"within {self._config.connect_timeout}s"
            ) from None
        return self.server_version

    async def close(self) -> None:
        """Disconnect for good and fail every outstanding request."""
        self._closed = True
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()
        self._idle.on_disconnect()
        self._correlator.fail_all(ConnectionLostError("Client closed"))
        # Wake callers waiting for readiness so they observe the closed flag
        self._ready.set()

    async def __aenter__(self) -> MPDClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _wait_ready(self, timeout: float | None = None) -> None:
        async def wait() -> None:
            while True:
                if self._closed:
                    raise ConnectionLostError("Client is closed")
                if self._ready.is_set():
                    return
                await self._ready.wait()

        if timeout is None:
            await wait()
        else:
            await asyncio.wait_for(wait(), timeout)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_command(self, command: Command, timeout: float | None = None) -> str:
        """Send one command and return its raw reply payload.

        Args:
            command: ``"name"`` or ``("name", arg, ...)``.
            timeout: Overrides ``config.timeout`` for this call.

        Raises:
            ProtocolError: The server answered with ``ACK``.
            ConnectionLostError: The connection dropped before the reply.
            CommandTimeoutError: No reply within the timeout; the connection
                is reset so later replies stay aligned.
        """
        line = serialize_command(command, self._config.escape_backslashes)
        return await self._send(line, timeout)

    async def send_commands(
        self, commands: Sequence[Command], timeout: float | None = None
    ) -> str:
        """Send a command list and return the combined reply payload."""
        block = serialize_command_list(commands, self._config.escape_backslashes)
        return await self._send(block, timeout)

    async def get_status(self) -> Record:
        return parse_key_value(await self.send_command("status"))

    async def get_current_song(self) -> Record:
        return parse_key_value(await self.send_command("currentsong"))

    async def get_playlist_info(self) -> list[Record]:
        """Songs of the current queue, one record per song.

        ``playlistinfo`` answers with one block of fields per song, so this
        returns a list rather than the single record ``get_status`` returns;
        folding the blocks into one record would keep only the last song.
        """
        return parse_records(await self.send_command("playlistinfo"))

    async def _send(self, line: str, timeout: float | None) -> str:
        if timeout is None:
            timeout = self._config.timeout
        losses = self._losses

        self._waiting += 1
        try:
            await self._lock.acquire()
        except asyncio.CancelledError:
            self._waiting -= 1
            self._resume_idle()
            raise
        self._waiting -= 1

        try:
            if self._losses != losses:
                raise ConnectionLostError("Connection lost before the command was sent")
            try:
                await self._wait_ready(timeout)
            except asyncio.TimeoutError:
                raise CommandTimeoutError(line, timeout) from None
            if self._losses != losses:
                raise ConnectionLostError("Connection lost before the command was sent")
            return await self._execute(line, timeout)
        finally:
            self._lock.release()
            self._resume_idle()

    async def _execute(self, line: str, timeout: float | None) -> str:
        connection = self._connection
        interrupt = self._idle.begin_command()
        try:
            if interrupt:
                connection.write_line(NOIDLE)
            connection.write_line(line)
            request = self._correlator.enqueue(line)
            await connection.drain()
            return await self._await_reply(request, timeout)
        finally:
            if self._idle.end_command(more_waiting=self._waiting > 0):
                self._write_idle()

    async def _await_reply(self, request: PendingRequest, timeout: float | None) -> str:
        if timeout is None:
            return await request.future
        try:
            return await asyncio.wait_for(request.future, timeout)
        except asyncio.TimeoutError:
            self._resync(f"no reply to {request.command!r} within {timeout}s")
            raise CommandTimeoutError(request.command, timeout) from None

    def _resync(self, reason: str) -> None:
        # A late reply would be matched to the next request; start over instead
        self._ready.clear()
        self._idle.on_disconnect()
        if self._connection is not None:
            self._connection.reset(reason)

    def _resume_idle(self) -> None:
        # A caller counted as waiting by end_command may have been cancelled
        if self._waiting or self._lock.locked() or not self._ready.is_set():
            return
        if self._connection is not None and self._idle.resume_if_unused():
            self._write_idle()

    def _write_idle(self) -> None:
        self._connection.write_line(IDLE)
        self._correlator.enqueue(IDLE, idle=True)

    # ------------------------------------------------------------------
    # Connection callbacks
    # ------------------------------------------------------------------

    def _handle_connecting(self) -> None:
        self._emit_state(StateEvent.CONNECTING)

    def _handle_ready(self, version: str) -> None:
        self._ready.set()
        if self._idle.on_ready():
            self._write_idle()
        for handler in list(self._ready_handlers):
            self._invoke(handler)
        self._emit_state(StateEvent.READY)

    def _handle_lost(self, error: ConnectionLostError) -> None:
        self._losses += 1
        self._ready.clear()
        self._idle.on_disconnect()
        failed = self._correlator.fail_all(error)
        if failed:
            logger.info("Failed %d pending request(s): %s", failed, error)
        self._emit_state(StateEvent.ERROR, error)

    def _handle_frame(self, frame: Frame) -> None:
        request = self._correlator.resolve_next(frame)
        if request is None or not request.idle:
            return

        match frame:
            case DataFrame(payload=payload):
                changed, reissue = self._idle.on_idle_reply(
                    payload, more_waiting=self._waiting > 0
                )
                for name in changed:
                    self._emit_system(name)
                if reissue:
                    self._write_idle()
            case ErrorFrame(message=message):
                logger.warning("Server rejected idle: %s", message)
                self._idle.on_idle_error()
            case _:
                raise TypeError(f"Unexpected frame for idle: {frame!r}")

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_system(self, handler: Callable[[str], Any], name: str | None = None) -> Callable[[], None]:
        """Subscribe to subsystem changes.

        Args:
            handler: Called with the subsystem name, once per ``changed:``
                line. May be a coroutine function.
            name: Only deliver changes of this subsystem.

        Returns:
            A callable that removes the subscription.
        """
        entry = (name, handler)
        self._system_handlers.append(entry)
        return _unsubscriber(self._system_handlers, entry)

    def on_state(self, handler: Callable[[StateEvent, Exception | None], Any]) -> Callable[[], None]:
        """Subscribe to connecting / ready / error notifications."""
        self._state_handlers.append(handler)
        return _unsubscriber(self._state_handlers, handler)

    def on_ready(self, handler: Callable[[], Any]) -> Callable[[], None]:
        """Subscribe to handshake completion, after every (re)connect."""
        self._ready_handlers.append(handler)
        return _unsubscriber(self._ready_handlers, handler)

    def _emit_system(self, name: str) -> None:
        logger.debug("Subsystem changed: %s", name)
        for wanted, handler in list(self._system_handlers):
            if wanted is None or wanted == name:
                self._invoke(handler, name)

    def _emit_state(self, event: StateEvent, error: Exception | None = None) -> None:
        for handler in list(self._state_handlers):
            self._invoke(handler, event, error)

    def _invoke(self, handler: Callable, *args) -> None:
        try:
            result = handler(*args)
        except Exception:
            logger.exception("Handler %r failed", handler)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background.add(task)
            task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Future) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Handler task failed", exc_info=task.exception())
