"""Command-line entry point: ``python -m weathergate`` or ``weathergate``."""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import Sequence

from aiohttp import web

from weathergate.middleware import DEFAULT_AUTH_HEADER
from weathergate.server import Server, ServerConfig
from weathergate.weather.open_meteo import FORECAST_URL, GEOCODING_URL, OpenMeteoService

logger = logging.getLogger("weathergate")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Weather forecast gateway over server-sent events.")
    parser.add_argument("--host", default=os.getenv("WEATHERGATE_HOST", "0.0.0.0"), help="Interface to bind.")  # noqa: S104
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "3000")), help="Port to bind.")
    parser.add_argument(
        "--call-timeout",
        type=float,
        default=float(os.getenv("WEATHERGATE_CALL_TIMEOUT", "30")),
        help="Seconds before a call is answered with an unavailable error.",
    )
    parser.add_argument(
        "--ping-interval",
        type=float,
        default=float(os.getenv("WEATHERGATE_PING_INTERVAL", "15")),
        help="Seconds between keep-alive pings on each stream.",
    )
    parser.add_argument(
        "--require-auth",
        action="store_true",
        default=_env_flag("WEATHERGATE_REQUIRE_AUTH"),
        help="Require the shared-secret header on stream and call endpoints.",
    )
    parser.add_argument(
        "--auth-header",
        default=os.getenv("WEATHERGATE_AUTH_HEADER", DEFAULT_AUTH_HEADER),
        help="Header carrying the shared secret.",
    )
    parser.add_argument(
        "--no-cors",
        action="store_true",
        default=_env_flag("WEATHERGATE_NO_CORS"),
        help="Do not send CORS headers.",
    )
    parser.add_argument("--geocoding-url", default=os.getenv("WEATHERGATE_GEOCODING_URL", GEOCODING_URL))
    parser.add_argument("--forecast-url", default=os.getenv("WEATHERGATE_FORECAST_URL", FORECAST_URL))
    parser.add_argument(
        "--debug",
        action="store_true",
        default=_env_flag("WEATHERGATE_DEBUG"),
        help="Enable verbose tracing of sessions, calls and frames.",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    # The secret is only read from the environment so it never shows up in ps
    return ServerConfig(
        host=args.host,
        port=args.port,
        call_timeout=args.call_timeout if args.call_timeout > 0 else None,
        ping_interval=args.ping_interval,
        require_auth=args.require_auth,
        auth_secret=os.getenv("WEATHERGATE_AUTH_SECRET") or None,
        auth_header=args.auth_header,
        enable_cors=not args.no_cors,
    )


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.setLevel(logging.DEBUG if args.debug else logging.INFO)

    config = config_from_args(args)
    service = OpenMeteoService(geocoding_url=args.geocoding_url, forecast_url=args.forecast_url)
    server = Server(config, service)

    async def close_service(app: web.Application) -> None:
        await service.close()

    app = server.create_app()
    app.on_cleanup.append(close_service)

    logger.info("Starting weathergate on %s:%s", config.host, config.port)
    web.run_app(app, host=config.host, port=config.port, print=None, handler_cancellation=True)


if __name__ == "__main__":  # pragma: no cover
    main()
