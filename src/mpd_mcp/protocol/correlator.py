"""FIFO matching of outstanding requests to reply frames.

MPD answers commands strictly in the order they were written, so the oldest
pending request always owns the next ``OK``-terminated block or ``ACK`` line.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field

from ..errors import ProtocolError
from .framing import DataFrame, ErrorFrame

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """A command written to the socket and still waiting for its reply.

    Wait-mode requests have no future: their reply is handled by the client
    directly and never delivered to a caller.
    """

    command: str
    future: asyncio.Future | None = None
    created_at: float = field(default_factory=time.monotonic)

    @property
    def idle(self) -> bool:
        return self.future is None


class Correlator:
    """Ordered queue of pending requests."""

    def __init__(self) -> None:
        self._queue: deque[PendingRequest] = deque()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def idle_pending(self) -> bool:
        return any(r.idle for r in self._queue)

    def enqueue(self, command: str, idle: bool = False) -> PendingRequest:
        """Register a request. Must be called in the same order as the writes."""
        future = None if idle else asyncio.get_running_loop().create_future()
        request = PendingRequest(command=command, future=future)
        self._queue.append(request)
        return request

    def resolve_next(self, frame: DataFrame | ErrorFrame) -> PendingRequest | None:
        """Hand ``frame`` to the oldest pending request.

        A data frame resolves the request's future with the payload, an error
        frame rejects it with :class:`ProtocolError`. The request is returned
        so wait-mode replies can be processed by the caller.
        """
        if not self._queue:
            logger.warning("Dropping %r: no request is pending", frame)
            return None

        request = self._queue.popleft()
        future = request.future
        if future is None:
            return request
        if future.done():
            # Caller gave up (cancelled); the reply is consumed to stay aligned
            logger.debug("Discarding reply to abandoned %r", request.command)
            return request

        match frame:
            case DataFrame(payload=payload):
                future.set_result(payload)
            case ErrorFrame():
                future.set_exception(
                    ProtocolError(
                        frame.message,
                        code=frame.code,
                        index=frame.index,
                        command=frame.command,
                    )
                )
            case _:
                raise TypeError(f"Cannot resolve a request with {frame!r}")
        return request

    def fail_all(self, exc: BaseException) -> int:
        """Reject every pending request with ``exc`` and empty the queue.

        Returns:
            The number of requests that were pending.
        """
        count = len(self._queue)
        while self._queue:
            request = self._queue.popleft()
            if request.future is not None and not request.future.done():
                request.future.set_exception(exc)
        return count
