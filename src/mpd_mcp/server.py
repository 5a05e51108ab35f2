"""MCP server entry point for a Music Player Daemon.

Exposes tools and resources via the Model Context Protocol using the
official Python MCP SDK with stdio transport. The MPD connection lives on
the server's event loop and is shared by every tool call.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import replace
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import MPDClient
from .config import ClientConfig
from .errors import MPDError, ProtocolError

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5.0
MAX_RECENT_CHANGES = 100

mcp = FastMCP(
    "mpd",
    instructions="MCP server for controlling a Music Player Daemon (MPD)",
)

# Global connection state
_client: MPDClient | None = None
_recent_changes: deque[str] = deque(maxlen=MAX_RECENT_CHANGES)


def _get_client() -> MPDClient:
    """Get the active client, raising if not connected."""
    if _client is None or not _client.connected:
        raise RuntimeError("Not connected to MPD. Use the 'connect' tool first.")
    return _client


def _error(exc: MPDError) -> dict[str, Any]:
    result: dict[str, Any] = {"error": str(exc), "kind": type(exc).__name__}
    if isinstance(exc, ProtocolError):
        result["code"] = exc.code
        result["command"] = exc.command
    return result


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(host: str | None = None, port: int | None = None) -> dict[str, Any]:
    """Connect to an MPD server.

    Defaults come from the MPD_HOST / MPD_PORT environment variables,
    falling back to localhost:6600. The connection is re-established
    automatically if it drops.

    Args:
        host: Server hostname.
        port: Server TCP port.
    """
    global _client
    if _client is not None and _client.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "version": _client.server_version,
        }
    if _client is not None:
        # Still retrying a dead address; start over with the new one
        await _client.close()
        _client = None

    try:
        config = ClientConfig.from_env()
        config = replace(
            config,
            connect_timeout=config.connect_timeout or DEFAULT_CONNECT_TIMEOUT,
        )
        client = MPDClient(host, port, config=config)
    except ValueError as e:
        return {"error": f"Invalid configuration: {e}"}
    client.on_system(_recent_changes.append)
    try:
        version = await client.connect()
    except MPDError as e:
        return _error(e)

    _client = client
    return {
        "connected": True,
        "host": client.config.host,
        "port": client.config.port,
        "version": version,
    }


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the connection to the MPD server."""
    global _client
    if _client is None:
        return {"disconnected": True}
    await _client.close()
    _client = None
    return {"disconnected": True}


# ─── QUERY TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
async def get_status() -> dict[str, Any]:
    """Player status: state, volume, current song position, elapsed time."""
    client = _get_client()
    try:
        return await client.get_status()
    except MPDError as e:
        return _error(e)


@mcp.tool()
async def get_current_song() -> dict[str, Any]:
    """Metadata of the song currently playing (empty when stopped)."""
    client = _get_client()
    try:
        return await client.get_current_song()
    except MPDError as e:
        return _error(e)


@mcp.tool()
async def get_playlist_info() -> dict[str, Any]:
    """List the songs in the current queue."""
    client = _get_client()
    try:
        songs = await client.get_playlist_info()
    except MPDError as e:
        return _error(e)
    return {"songs": songs, "count": len(songs)}


@mcp.tool()
def recent_changes(clear: bool = True) -> dict[str, Any]:
    """Subsystems reported as changed since the last call.

    Args:
        clear: Forget the reported changes after returning them.
    """
    changes = list(_recent_changes)
    if clear:
        _recent_changes.clear()
    return {"changed": changes}


# ─── RAW COMMAND TOOLS ────────────────────────────────────────────────

@mcp.tool()
async def send_command(name: str, args: list[str] | None = None) -> dict[str, Any]:
    """Send an arbitrary MPD command and return its raw reply.

    Args:
        name: Command name, e.g. 'play', 'setvol', 'find'.
        args: Command arguments; each is quoted automatically.
    """
    client = _get_client()
    try:
        payload = await client.send_command([name, *(args or [])])
    except MPDError as e:
        return _error(e)
    except ValueError as e:
        return {"error": str(e)}
    return {"response": payload}


@mcp.tool()
async def send_commands(commands: list[list[str]]) -> dict[str, Any]:
    """Send several commands as one command list.

    Args:
        commands: Each entry is [name, arg1, arg2, ...].
    """
    client = _get_client()
    try:
        payload = await client.send_commands(commands)
    except MPDError as e:
        return _error(e)
    except ValueError as e:
        return {"error": str(e)}
    return {"response": payload}


# ─── MCP RESOURCES ────────────────────────────────────────────────────

@mcp.resource("mpd://status")
async def resource_status() -> str:
    """Current player status as JSON."""
    if _client is None or not _client.connected:
        return json.dumps({"connected": False})
    try:
        status = await _client.get_status()
    except MPDError as e:
        return json.dumps(_error(e))
    return json.dumps({"connected": True, "status": status})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
