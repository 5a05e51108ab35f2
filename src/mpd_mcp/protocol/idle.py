"""Wait-mode (``idle``/``noidle``) state machine.

The server refuses any command while an ``idle`` is outstanding, so before
each command the client must write ``noidle``. That forces the pending
``idle`` to answer early, possibly with an empty list of changes, and the
answer is consumed by the wait-mode request, not by the command. Once no
caller is left waiting, ``idle`` is issued again.

The coordinator does no I/O; each transition returns what the client has to
write.
"""

from __future__ import annotations

import logging
from enum import Enum

from .parser import parse_changed

logger = logging.getLogger(__name__)


class IdleState(Enum):
    OFFLINE = "offline"  # no handshake yet on the current socket
    READY = "ready"      # online, nothing outstanding
    IDLE = "idle"        # an idle request is outstanding
    BUSY = "busy"        # a command is outstanding


class IdleCoordinator:
    """Decides when to write ``idle`` and ``noidle``.

    Args:
        enabled: Re-enter wait-mode whenever the connection would otherwise
            sit unused. When False the client never writes ``idle``.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._state = IdleState.OFFLINE

    @property
    def state(self) -> IdleState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _settle(self, more_waiting: bool) -> bool:
        if self._enabled and not more_waiting:
            self._state = IdleState.IDLE
            return True
        self._state = IdleState.READY
        return False

    def on_ready(self) -> bool:
        """Handshake completed. Returns True if ``idle`` must be written."""
        return self._settle(more_waiting=False)

    def begin_command(self) -> bool:
        """A command is about to be written.

        Returns:
            True if ``noidle`` must be written before the command.
        """
        if self._state is IdleState.OFFLINE:
            raise RuntimeError("Cannot issue a command before the handshake")
        if self._state is IdleState.BUSY:
            raise RuntimeError("A command is already outstanding")
        interrupt = self._state is IdleState.IDLE
        self._state = IdleState.BUSY
        return interrupt

    def end_command(self, more_waiting: bool) -> bool:
        """The command's reply arrived. Returns True if ``idle`` must be written."""
        if self._state is not IdleState.BUSY:
            # Connection dropped while the command was outstanding
            return False
        return self._settle(more_waiting)

    def resume_if_unused(self) -> bool:
        """The last waiting caller went away without sending anything.

        Returns True if ``idle`` must be written.
        """
        if self._enabled and self._state is IdleState.READY:
            self._state = IdleState.IDLE
            return True
        return False

    def on_idle_reply(self, payload: str, more_waiting: bool = False) -> tuple[list[str], bool]:
        """Process the reply to an ``idle`` request.

        Returns:
            ``(changed, reissue)``: the subsystem names reported, one per
            ``changed:`` line, and whether ``idle`` must be written again.
        """
        changed = parse_changed(payload)
        if self._state is IdleState.IDLE:
            return changed, self._settle(more_waiting)
        # Interrupted by noidle; the command in flight re-enters wait-mode
        return changed, False

    def on_idle_error(self) -> None:
        """The server rejected ``idle``. Stay out of wait-mode."""
        if self._state is IdleState.IDLE:
            logger.warning("Server rejected idle; wait-mode disabled until next command")
            self._state = IdleState.READY

    def on_disconnect(self) -> None:
        self._state = IdleState.OFFLINE
