"""Tests for the socket lifecycle and reconnect loop."""

from __future__ import annotations

import asyncio

import pytest

from conftest import wait_until
from mpd_mcp.config import fixed_delay
from mpd_mcp.errors import ConnectionLostError
from mpd_mcp.protocol.framing import DataFrame
from mpd_mcp.transport.connection import ConnectionState, MPDConnection


class Recorder:
    def __init__(self):
        self.frames = []
        self.versions = []
        self.lost = []
        self.connecting = 0

    def connection(self, port: int, **kwargs) -> MPDConnection:
        return MPDConnection(
            "127.0.0.1",
            port,
            on_frame=self.frames.append,
            on_ready=self.versions.append,
            on_lost=self.lost.append,
            on_connecting=self._connecting,
            reconnect_policy=kwargs.get("policy", fixed_delay(0.01)),
        )

    def _connecting(self):
        self.connecting += 1


@pytest.mark.asyncio
async def test_handshake_then_frames(mpd_server):
    """The banner makes the connection ready; replies arrive as frames."""
    mpd_server.replies["status"] = "state: play"
    rec = Recorder()
    conn = rec.connection(mpd_server.port)
    assert conn.state is ConnectionState.DISCONNECTED
    conn.start()
    try:
        await wait_until(lambda: conn.connected)
        assert rec.versions == ["0.23.5"]
        assert conn.server_version == "0.23.5"

        conn.write_line("status")
        await conn.drain()
        await wait_until(lambda: rec.frames)
        assert rec.frames == [DataFrame(payload="state: play")]
    finally:
        await conn.close()
    assert conn.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_write_before_handshake_rejected(mpd_server):
    """Nothing may be written until the server has identified itself."""
    rec = Recorder()
    conn = rec.connection(mpd_server.port)
    with pytest.raises(ConnectionLostError):
        conn.write_line("status")


@pytest.mark.asyncio
async def test_reconnects_after_drop(mpd_server):
    """A dropped socket is reported, then a new connection is made."""
    rec = Recorder()
    conn = rec.connection(mpd_server.port)
    conn.start()
    try:
        await wait_until(lambda: conn.connected)
        mpd_server.drop()
        await wait_until(lambda: len(rec.versions) == 2)
        assert len(rec.lost) == 1
        assert isinstance(rec.lost[0], ConnectionLostError)
        assert rec.connecting == 2
        assert conn.attempts == 2
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_reset_reports_reason(mpd_server):
    """A forced reset surfaces its reason in the loss notification."""
    rec = Recorder()
    conn = rec.connection(mpd_server.port)
    conn.start()
    try:
        await wait_until(lambda: conn.connected)
        conn.reset("resync")
        await wait_until(lambda: rec.lost)
        assert "resync" in str(rec.lost[0])
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_keeps_retrying_unreachable_server(mpd_server):
    """Refused connections are retried with the policy's delay, without limit."""
    port = mpd_server.port
    await mpd_server.stop()

    delays = []

    def policy(failures):
        delays.append(failures)
        return 0.01

    rec = Recorder()
    conn = rec.connection(port, policy=policy)
    conn.start()
    try:
        await wait_until(lambda: len(rec.lost) >= 3)
        assert delays[:3] == [1, 2, 3]
        assert not conn.connected
    finally:
        await conn.close()
    await mpd_server.start()


@pytest.mark.asyncio
async def test_callback_error_does_not_stop_reading(mpd_server):
    """An exception from a frame callback is logged and reading continues."""
    mpd_server.replies["status"] = "state: play"
    frames = []

    def on_frame(frame):
        frames.append(frame)
        raise RuntimeError("boom")

    conn = MPDConnection(
        "127.0.0.1",
        mpd_server.port,
        on_frame=on_frame,
        on_ready=lambda version: None,
        on_lost=lambda error: None,
        reconnect_policy=fixed_delay(0.01),
    )
    conn.start()
    try:
        await wait_until(lambda: conn.connected)
        conn.write_line("status")
        conn.write_line("status")
        await wait_until(lambda: len(frames) == 2)
        assert conn.connected
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_socket_closed_before_reconnect(mpd_server, monkeypatch):
    """The dropped socket is fully closed before the next attempt starts."""
    events = []
    wait_closed = asyncio.StreamWriter.wait_closed

    async def recording_wait_closed(writer):
        try:
            await wait_closed(writer)
        finally:
            events.append("closed")

    monkeypatch.setattr(asyncio.StreamWriter, "wait_closed", recording_wait_closed)
    versions = []
    conn = MPDConnection(
        "127.0.0.1",
        mpd_server.port,
        on_frame=lambda frame: None,
        on_ready=versions.append,
        on_lost=lambda error: None,
        on_connecting=lambda: events.append("connecting"),
        reconnect_policy=fixed_delay(0.01),
    )
    conn.start()
    try:
        await wait_until(lambda: conn.connected)
        mpd_server.drop()
        await wait_until(lambda: len(versions) == 2)
        assert events[:3] == ["connecting", "closed", "connecting"]
    finally:
        await conn.close()
