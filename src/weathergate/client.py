"""Client implementation for the weathergate protocol."""

from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Self
from urllib.parse import parse_qs, urlsplit

import aiohttp

from weathergate.error import GatewayError
from weathergate.middleware import DEFAULT_AUTH_HEADER
from weathergate.protocol.wire import (
    CallRequest,
    EndpointFrame,
    ErrorFrame,
    EventDecoder,
    ResultFrame,
    parse_frame,
)

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    """Configuration for the weathergate client."""

    url: str  # Server base URL, e.g. "http://127.0.0.1:3000"
    stream_path: str = "/sse"
    timeout: float = 30.0
    auth_secret: str | None = None
    auth_header: str = DEFAULT_AUTH_HEADER


class Client:
    """Weathergate client.

    Opens the event stream, learns its session id from the endpoint frame,
    then POSTs calls and matches the result frames back to them by id.
    """

    def __init__(self, config: ClientConfig) -> None:
        self.config = config
        self._session: aiohttp.ClientSession | None = None
        self._stream: aiohttp.ClientResponse | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._endpoint: asyncio.Future[str] | None = None
        self._pending: dict[str, asyncio.Future[ResultFrame | ErrorFrame]] = {}
        self._call_ids = itertools.count(1)

    async def __aenter__(self) -> Self:
        """Async context manager entry - opens the stream."""
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def endpoint(self) -> str:
        """Call endpoint path announced by the server, query string included."""
        if self._endpoint is None or not self._endpoint.done():
            msg = "Client not connected - use async context manager"
            raise RuntimeError(msg)
        return self._endpoint.result()

    @property
    def session_id(self) -> str:
        values = parse_qs(urlsplit(self.endpoint).query).get("session_id")
        if not values:
            msg = f"Endpoint {self.endpoint!r} carries no session_id"
            raise GatewayError.internal(msg)
        return values[0]

    async def connect(self) -> None:
        """Open the event stream and wait for the session id."""
        headers = {}
        if self.config.auth_secret:
            headers[self.config.auth_header] = self.config.auth_secret
        self._session = aiohttp.ClientSession(base_url=self.config.url, headers=headers)

        try:
            self._stream = await self._session.get(
                self.config.stream_path,
                headers={"Accept": "text/event-stream"},
                timeout=aiohttp.ClientTimeout(total=None, connect=self.config.timeout),
            )
            if self._stream.status != 200:
                raise await _error_from_response(self._stream)

            self._endpoint = asyncio.get_running_loop().create_future()
            self._listener_task = asyncio.create_task(self._listen_loop())
            await asyncio.wait_for(asyncio.shield(self._endpoint), timeout=self.config.timeout)
        except BaseException:
            await self.close()
            raise

    async def close(self) -> None:
        """Close the stream; the server then drops the session."""
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._listener_task
        self._listener_task = None

        if self._stream is not None:
            self._stream.close()
            self._stream = None
        if self._session is not None:
            await self._session.close()
            self._session = None

        self._fail_pending(GatewayError.channel_closed("Client closed"))

    async def call(self, operation: str, arguments: dict[str, Any] | None = None) -> Any:
        """Call an operation and wait for its result frame.

        Raises:
            GatewayError: If the call is rejected or its frame is an error
        """
        call_id = str(next(self._call_ids))
        future: asyncio.Future[ResultFrame | ErrorFrame] = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future

        try:
            await self.submit(CallRequest(operation, arguments or {}, call_id))
            frame = await asyncio.wait_for(future, timeout=self.config.timeout)
        except TimeoutError:
            msg = f"Timeout waiting for result of call {call_id}"
            raise GatewayError.internal(msg) from None
        finally:
            self._pending.pop(call_id, None)

        if isinstance(frame, ErrorFrame):
            raise frame.error
        return frame.result

    async def submit(self, call: CallRequest) -> None:
        """POST a call without waiting for its result.

        Raises:
            GatewayError: If the server does not accept the call
        """
        if self._session is None:
            msg = "Client not connected - use async context manager"
            raise RuntimeError(msg)

        async with self._session.post(
            self.endpoint,
            json=call.to_json(),
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
        ) as response:
            if response.status != 202:
                raise await _error_from_response(response)

    async def search_location(self, city: str) -> list[dict[str, Any]]:
        return await self.call("search_location", {"city": city})

    async def get_complete_forecast(self, latitude: float, longitude: float) -> dict[str, Any]:
        return await self.call("get_complete_forecast", {"latitude": latitude, "longitude": longitude})

    async def list_operations(self) -> list[dict[str, Any]]:
        return await self.call("list_operations")

    async def _listen_loop(self) -> None:
        """Background task reading frames off the event stream."""
        assert self._stream is not None
        decoder = EventDecoder()
        try:
            async for raw_line in self._stream.content:
                event = decoder.feed_line(raw_line.decode("utf-8").rstrip("\n"))
                if event is None:
                    continue
                try:
                    frame = parse_frame(*event)
                except ValueError:
                    logger.warning("Ignoring malformed frame: %r", event)
                    continue
                self._handle_frame(frame)
        except (aiohttp.ClientError, ValueError) as e:
            # ValueError covers over-long lines and undecodable bytes
            logger.debug("Event stream failed: %s", e)
        finally:
            logger.debug("Event stream ended")
            error = GatewayError.channel_closed("Event stream ended")
            if self._endpoint is not None and not self._endpoint.done():
                self._endpoint.set_exception(error)
            self._fail_pending(error)

    def _handle_frame(self, frame: EndpointFrame | ResultFrame | ErrorFrame) -> None:
        match frame:
            case EndpointFrame(url):
                if self._endpoint is not None and not self._endpoint.done():
                    self._endpoint.set_result(url)
            case ResultFrame() | ErrorFrame():
                future = self._pending.get(str(frame.call_id))
                if future is not None and not future.done():
                    future.set_result(frame)
                else:
                    logger.warning("Received frame for unknown call id=%r", frame.call_id)

    def _fail_pending(self, error: GatewayError) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)


async def _error_from_response(response: aiohttp.ClientResponse) -> GatewayError:
    try:
        body = await response.json(content_type=None)
        return GatewayError.from_json(body["error"])
    except (aiohttp.ClientError, ValueError, KeyError, TypeError):
        msg = f"Unexpected HTTP status {response.status}"
        return GatewayError.internal(msg)
