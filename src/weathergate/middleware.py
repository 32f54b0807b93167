"""aiohttp middlewares: error mapping, shared-secret auth and CORS."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Collection

from aiohttp import web
from aiohttp.typedefs import Handler, Middleware

from weathergate.error import GatewayError

logger = logging.getLogger(__name__)

DEFAULT_AUTH_HEADER = "x-weathergate-token"  # noqa: S105


def error_response(error: GatewayError) -> web.Response:
    """Synchronous JSON error response with the status mapped from the code."""
    return web.json_response({"error": error.to_json()}, status=error.code.http_status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Convert ``GatewayError`` raised by a handler into a JSON response."""
    try:
        return await handler(request)
    except GatewayError as e:
        logger.debug("%s %s -> %s", request.method, request.path, e)
        return error_response(e)


def auth_middleware(
    *,
    secret: str | None,
    header: str = DEFAULT_AUTH_HEADER,
    exempt: Collection[str] = (),
) -> Middleware:
    """Require ``header`` to carry the shared secret.

    With no secret configured every guarded request fails closed with a
    misconfiguration error instead of being let through.
    """

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.method == "OPTIONS" or request.path in exempt:
            return await handler(request)

        if not secret:
            logger.error("Authentication is required but no secret is configured")
            return error_response(GatewayError.misconfigured("Server authentication is misconfigured"))

        provided = request.headers.get(header, "")
        if not provided or not secrets.compare_digest(provided.encode(), secret.encode()):
            logger.info("Rejected unauthenticated %s %s", request.method, request.path)
            return error_response(GatewayError.unauthorized(f"missing or invalid {header} header"))

        return await handler(request)

    return middleware


@web.middleware
async def preflight_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Answer CORS preflight requests without reaching auth or handlers."""
    if request.method == "OPTIONS":
        return web.Response(status=200)
    return await handler(request)


def cors_headers(auth_header: str | None = None) -> dict[str, str]:
    allowed = "Content-Type" if auth_header is None else f"Content-Type, {auth_header}"
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": allowed,
    }


def install_cors(app: web.Application, auth_header: str | None = None) -> None:
    """Add CORS headers to every response, streaming ones included."""
    headers = cors_headers(auth_header)

    async def on_prepare(request: web.Request, response: web.StreamResponse) -> None:
        response.headers.update(headers)

    app.on_response_prepare.append(on_prepare)
    app.middlewares.insert(0, preflight_middleware)
