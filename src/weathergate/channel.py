"""Push channels: ordered, append-only frame streams to one connected client.

A channel is ``OPEN`` until it is closed explicitly, the peer disconnects,
or a write fails; ``CLOSED`` is terminal. Sends are serialized through a
per-channel lock so frames reach the connection whole and in submission
order, whichever task submits them.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Self

from aiohttp_sse import EventSourceResponse

from weathergate.error import GatewayError
from weathergate.protocol.wire import Frame

if TYPE_CHECKING:
    from aiohttp import web

logger = logging.getLogger(__name__)

CloseCallback = Callable[["PushChannel"], None]


class ChannelState(Enum):
    OPEN = "open"
    CLOSED = "closed"


class PushChannel(ABC):
    """Base class for push channels.

    Subclasses implement ``_write`` for their transport and may override
    ``_shutdown`` to release it. Everything else (state machine, write
    ordering, disconnect notification) lives here.
    """

    def __init__(self, *, log: logging.Logger | None = None) -> None:
        self._state = ChannelState.OPEN
        self._write_lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._close_callbacks: list[CloseCallback] = []
        self._log = log or logger

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is ChannelState.CLOSED

    async def send(self, frame: Frame) -> None:
        """Append one frame to the connection.

        Raises:
            GatewayError: CHANNEL_CLOSED if the channel is closed, or the
                write failed and closed it
        """
        if self.is_closed:
            raise GatewayError.channel_closed()

        async with self._write_lock:
            # The channel may have closed while we waited for the lock
            if self.is_closed:
                raise GatewayError.channel_closed()
            try:
                await self._write(frame)
            except (ConnectionError, RuntimeError) as e:
                self._log.debug("Write failed on %r, closing: %s", self, e)
                self.close()
                msg = f"Write failed: {e}"
                raise GatewayError.channel_closed(msg) from e

        self._log.debug("Sent %s frame on %r", frame.event, self)

    def close(self) -> None:
        """Close the channel. Safe to call any number of times."""
        if self.is_closed:
            return
        self._state = ChannelState.CLOSED
        self._closed.set()
        self._shutdown()

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                self._log.exception("Close callback failed on %r", self)

    async def wait_closed(self) -> None:
        """Wait until the channel reaches ``CLOSED``."""
        await self._closed.wait()

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a disconnect notification.

        If the channel is already closed the callback runs immediately.
        """
        if self.is_closed:
            callback(self)
            return
        self._close_callbacks.append(callback)

    @abstractmethod
    async def _write(self, frame: Frame) -> None:
        """Write one whole frame to the underlying connection."""

    def _shutdown(self) -> None:  # noqa: B027
        """Release the underlying connection."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._state.value}>"


class SseChannel(PushChannel):
    """Push channel over a server-sent event stream.

    Peer disconnects are detected by the stream's keep-alive ping: when a
    ping write fails the stream stops and the channel closes itself.
    """

    def __init__(self, response: EventSourceResponse, *, log: logging.Logger | None = None) -> None:
        super().__init__(log=log)
        self.response = response
        self._watcher: asyncio.Task[None] | None = None

    @classmethod
    async def open(
        cls,
        request: web.Request,
        *,
        ping_interval: float = 15.0,
        headers: Mapping[str, str] | None = None,
        log: logging.Logger | None = None,
    ) -> Self:
        """Send the event-stream preamble and return an open channel."""
        response = EventSourceResponse(headers=dict(headers or {}))
        response.ping_interval = ping_interval
        await response.prepare(request)

        channel = cls(response, log=log)
        channel._watcher = asyncio.create_task(channel._watch_peer())
        return channel

    async def _watch_peer(self) -> None:
        await self.response.wait()
        if not self.is_closed:
            self._log.debug("Peer disconnected from %r", self)
        self.close()

    async def _write(self, frame: Frame) -> None:
        if not self.response.is_connected():
            msg = "Event stream is no longer connected"
            raise ConnectionResetError(msg)
        await self.response.send(frame.data, event=frame.event)

    def _shutdown(self) -> None:
        self.response.stop_streaming()
