"""Server implementation for the weathergate protocol."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Self
from urllib.parse import urlencode

from aiohttp import web

from weathergate.channel import SseChannel
from weathergate.dispatcher import DEFAULT_CALL_TIMEOUT, ProtocolDispatcher
from weathergate.error import GatewayError
from weathergate.middleware import DEFAULT_AUTH_HEADER, auth_middleware, error_middleware, install_cors
from weathergate.operations import WeatherService, build_operations
from weathergate.protocol.wire import EndpointFrame
from weathergate.router import RequestRouter
from weathergate.session import SessionRegistry
from weathergate.weather.open_meteo import OpenMeteoService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the weathergate server."""

    host: str = "127.0.0.1"
    port: int = 3000
    stream_path: str = "/sse"
    messages_path: str = "/messages"
    health_path: str = "/health"
    call_timeout: float | None = DEFAULT_CALL_TIMEOUT
    ping_interval: float = 15.0  # Backstop for half-open connections that never report a close
    shutdown_timeout: float = 5.0
    max_body_size: int = 1024 * 1024

    # Shared-secret authentication (enforced when required or a secret is set)
    require_auth: bool = False
    auth_secret: str | None = None
    auth_header: str = DEFAULT_AUTH_HEADER

    enable_cors: bool = True

    @property
    def auth_enabled(self) -> bool:
        return self.require_auth or bool(self.auth_secret)


class Server:
    """Weathergate server: the composition root.

    Endpoints:
    - GET  <stream_path>: opens a session and streams its frames
    - POST <messages_path>?session_id=...: submits one call to that session
    - GET  <health_path>: liveness check

    The server owns the session registry, the dispatcher and the router.
    Shutdown closes every live channel, then drains in-flight calls.
    """

    def __init__(
        self,
        config: ServerConfig,
        service: WeatherService | None = None,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._log = log or logger
        self._owned_service = OpenMeteoService() if service is None else None
        self.service: WeatherService = service or self._owned_service  # type: ignore[assignment]

        self.registry = SessionRegistry(log=self._log)
        self.dispatcher = ProtocolDispatcher(
            build_operations(self.service),
            call_timeout=config.call_timeout,
            log=self._log,
        )
        self.router = RequestRouter(self.registry, self.dispatcher, log=self._log)

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    async def __aenter__(self) -> Self:
        """Enter async context manager - starts the server."""
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager - stops the server."""
        await self.stop()

    @property
    def port(self) -> int:
        """Get the actual bound port (useful when port=0 for dynamic allocation)."""
        if self._site is None:
            return self.config.port
        if self._site._server:
            return self._site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
        return self.config.port

    def create_app(self) -> web.Application:
        """Build the aiohttp application."""
        middlewares = [error_middleware]
        if self.config.auth_enabled:
            middlewares.append(
                auth_middleware(
                    secret=self.config.auth_secret,
                    header=self.config.auth_header,
                    exempt=(self.config.health_path,),
                )
            )

        app = web.Application(middlewares=middlewares, client_max_size=self.config.max_body_size)
        if self.config.enable_cors:
            install_cors(app, self.config.auth_header if self.config.auth_enabled else None)

        app.router.add_get(self.config.stream_path, self._handle_stream)
        app.router.add_post(self.config.messages_path, self._handle_message)
        app.router.add_get(self.config.health_path, self._handle_health)
        app.on_shutdown.append(self._on_shutdown)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def start(self) -> None:
        """Start the server."""
        self._app = self.create_app()
        # Cancel the stream handler as soon as its client disconnects
        self._runner = web.AppRunner(self._app, handler_cancellation=True)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        self._log.info("Server listening on %s:%s", self.config.host, self.port)
        self._log.info("Stream endpoint: %s, call endpoint: %s", self.config.stream_path, self.config.messages_path)

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None

    async def _on_shutdown(self, app: web.Application) -> None:
        # Runs after the listening sockets close, before aiohttp waits on handlers
        self.registry.close_all()
        await self.dispatcher.drain(timeout=self.config.shutdown_timeout)

    async def _on_cleanup(self, app: web.Application) -> None:
        if self._owned_service is not None:
            await self._owned_service.close()

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        """Open a session and keep its event stream alive until either side closes."""
        channel = await SseChannel.open(request, ping_interval=self.config.ping_interval, log=self._log)
        session_id = self.registry.register(channel)
        endpoint = f"{self.config.messages_path}?{urlencode({'session_id': str(session_id)})}"
        self._log.info("Opened session %s for %s", session_id, request.remote)

        try:
            await channel.send(EndpointFrame(endpoint))
            await channel.wait_closed()
        except GatewayError as e:
            self._log.debug("Session %s ended early: %s", session_id, e)
        finally:
            channel.close()
            self._log.info("Closed session %s", session_id)

        return channel.response

    async def _handle_message(self, request: web.Request) -> web.Response:
        """Accept one call for a session; its result arrives on the stream."""
        try:
            payload = await request.json()
        except ValueError as e:
            msg = "Request body must be valid JSON"
            raise GatewayError.bad_request(msg) from e

        self.router.route(request.query.get("session_id"), payload)
        return web.json_response({"status": "accepted"}, status=202)

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})
