"""Protocol layer: session identifiers and the wire format."""

from weathergate.protocol.ids import SessionId, SessionIdAllocator
from weathergate.protocol.wire import (
    CallRequest,
    EndpointFrame,
    ErrorFrame,
    Frame,
    ResultFrame,
    parse_frame,
)

__all__ = [
    "CallRequest",
    "EndpointFrame",
    "ErrorFrame",
    "Frame",
    "ResultFrame",
    "SessionId",
    "SessionIdAllocator",
    "parse_frame",
]
