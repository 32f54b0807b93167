"""Weathergate - Python Implementation

A session-multiplexed streaming gateway: each client opens a server-sent
event stream, receives a session id, and POSTs location-search and
forecast calls whose results are pushed back over its own stream.
"""

from weathergate.channel import ChannelState, PushChannel, SseChannel
from weathergate.client import Client, ClientConfig
from weathergate.dispatcher import ProtocolDispatcher
from weathergate.error import ErrorCode, GatewayError
from weathergate.operations import Operation, WeatherService, build_operations
from weathergate.protocol.ids import SessionId, SessionIdAllocator
from weathergate.router import RequestRouter
from weathergate.server import Server, ServerConfig
from weathergate.session import Session, SessionRegistry
from weathergate.weather import OpenMeteoService, translate_code

__version__ = "0.1.0"

__all__ = [
    # Client
    "Client",
    "ClientConfig",
    # Server
    "Server",
    "ServerConfig",
    # Core
    "ChannelState",
    "Operation",
    "ProtocolDispatcher",
    "PushChannel",
    "RequestRouter",
    "Session",
    "SessionId",
    "SessionIdAllocator",
    "SessionRegistry",
    "SseChannel",
    # Weather
    "OpenMeteoService",
    "WeatherService",
    "build_operations",
    "translate_code",
    # Errors
    "ErrorCode",
    "GatewayError",
]
