"""Shared fixtures: an in-process fake MPD server speaking the line protocol."""

from __future__ import annotations

import asyncio

import pytest_asyncio

from mpd_mcp.client import MPDClient
from mpd_mcp.config import ClientConfig


class FakeMPDServer:
    """Just enough of MPD to exercise the client.

    ``replies`` maps a command line to its data lines (without ``OK``),
    ``errors`` maps a command line to an ``ACK`` line, and commands in
    ``silent`` are never answered. Commands in ``delayed`` are answered
    after the given number of seconds. Every received line is recorded in
    ``received``; a command arriving while the connection is in idle (other
    than ``noidle``) is recorded in ``violations``.
    """

    def __init__(self, name: str = "MPD", version: str = "0.23.5") -> None:
        self.banner = f"OK {name} {version}\n"
        self.replies: dict[str, str] = {}
        self.errors: dict[str, str] = {}
        self.silent: set[str] = set()
        self.delayed: dict[str, float] = {}
        self.received: list[str] = []
        self.violations: list[str] = []
        self.connections = 0
        self._writers: list[asyncio.StreamWriter] = []
        self._idle_writer: asyncio.StreamWriter | None = None
        self._pending_changes: list[str] = []
        self._server: asyncio.AbstractServer | None = None

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)

    async def stop(self) -> None:
        self.drop()
        self._server.close()
        await self._server.wait_closed()

    def drop(self) -> None:
        """Abort every open client connection."""
        for writer in self._writers:
            writer.transport.abort()
        self._writers.clear()
        self._idle_writer = None

    def notify(self, *subsystems: str) -> None:
        """Report changed subsystems to the idling client, or remember them."""
        self._pending_changes.extend(subsystems)
        if self._idle_writer is not None:
            self._flush_changes(self._idle_writer)

    def queue_change(self, *subsystems: str) -> None:
        """Record changes without answering the pending idle."""
        self._pending_changes.extend(subsystems)

    def commands(self) -> list[str]:
        """Received lines other than idle/noidle."""
        return [c for c in self.received if c not in ("idle", "noidle")]

    def _flush_changes(self, writer: asyncio.StreamWriter) -> None:
        body = "".join(f"changed: {name}\n" for name in self._pending_changes)
        self._pending_changes.clear()
        self._idle_writer = None
        writer.write((body + "OK\n").encode())

    def _reply(self, line: str) -> str:
        if line in self.errors:
            return self.errors[line] + "\n"
        body = self.replies.get(line, "")
        if body and not body.endswith("\n"):
            body += "\n"
        return body

    def _late_reply(self, writer: asyncio.StreamWriter, line: str) -> None:
        if not writer.is_closing():
            writer.write((self._reply(line) + "OK\n").encode())

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        writer.write(self.banner.encode())
        command_list: list[str] | None = None
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode().rstrip("\n")
                self.received.append(line)

                if line == "noidle":
                    if self._idle_writer is writer:
                        self._flush_changes(writer)
                    continue
                if self._idle_writer is writer:
                    self.violations.append(line)
                    continue
                if command_list is not None:
                    if line == "command_list_end":
                        errors = [c for c in command_list if c in self.errors]
                        if errors:
                            writer.write(self._reply(errors[0]).encode())
                        else:
                            body = "".join(self._reply(c) for c in command_list)
                            writer.write((body + "OK\n").encode())
                        command_list = None
                    else:
                        command_list.append(line)
                    continue
                if line == "command_list_begin":
                    command_list = []
                elif line == "idle":
                    self._idle_writer = writer
                    if self._pending_changes:
                        self._flush_changes(writer)
                elif line in self.silent:
                    continue
                elif line in self.delayed:
                    asyncio.get_running_loop().call_later(
                        self.delayed[line], self._late_reply, writer, line
                    )
                elif line in self.errors:
                    writer.write(self._reply(line).encode())
                else:
                    writer.write((self._reply(line) + "OK\n").encode())
        except ConnectionError:
            pass
        finally:
            if self._idle_writer is writer:
                self._idle_writer = None
            writer.close()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(0.01)


def make_config(**overrides) -> ClientConfig:
    settings = {"reconnect_delay": 0.01, "connect_timeout": 2.0}
    settings.update(overrides)
    return ClientConfig(**settings)


@pytest_asyncio.fixture
async def mpd_server():
    server = FakeMPDServer()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def client(mpd_server):
    c = MPDClient("127.0.0.1", mpd_server.port, config=make_config())
    await c.connect()
    yield c
    await c.close()
