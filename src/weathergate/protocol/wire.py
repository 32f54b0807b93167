"""Wire format for the weathergate protocol.

Inbound calls are JSON objects POSTed to the call endpoint:

    {"id": "1", "operation": "search_location", "arguments": {"city": "Paris"}}

Outbound frames are server-sent events on the session's stream:

    event: endpoint            data: /messages?session_id=<id>
    event: message             data: {"id": "1", "operation": ..., "result": ...}
    event: message             data: {"id": "1", "operation": ..., "error": {...}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, ClassVar

from weathergate.error import GatewayError

CallId = str | int | None


def _check_call_id(value: Any) -> CallId:
    # bool is an int subclass but never a valid correlation id
    if value is None or (isinstance(value, str | int) and not isinstance(value, bool)):
        return value
    msg = "id must be a string, an integer or null"
    raise ValueError(msg)


@dataclass(frozen=True)
class CallRequest:
    """One inbound call: operation name, arguments and correlation id."""

    operation: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: CallId = None

    def to_json(self) -> dict[str, Any]:
        """Convert to JSON object."""
        result: dict[str, Any] = {"operation": self.operation, "arguments": self.arguments}
        if self.call_id is not None:
            result["id"] = self.call_id
        return result

    @staticmethod
    def from_json(obj: Any) -> CallRequest:
        """Parse from a decoded JSON body.

        Only the envelope is checked here; the arguments are validated
        against the operation's schema by the dispatcher.

        Raises:
            ValueError: If the envelope is malformed
        """
        if not isinstance(obj, dict):
            msg = "Call body must be a JSON object"
            raise ValueError(msg)

        operation = obj.get("operation")
        if not isinstance(operation, str) or not operation:
            msg = "operation must be a non-empty string"
            raise ValueError(msg)

        arguments = obj.get("arguments")
        if arguments is None:
            arguments = {}
        elif not isinstance(arguments, dict):
            msg = "arguments must be a JSON object"
            raise ValueError(msg)

        return CallRequest(operation, arguments, _check_call_id(obj.get("id")))


# Outbound frames


@dataclass(frozen=True)
class EndpointFrame:
    """First frame of every stream: where to POST calls for this session."""

    event: ClassVar[str] = "endpoint"

    url: str

    @property
    def data(self) -> str:
        return self.url


@dataclass(frozen=True)
class ResultFrame:
    """Terminal frame carrying a successful result."""

    event: ClassVar[str] = "message"

    call_id: CallId
    operation: str
    result: Any

    def to_json(self) -> dict[str, Any]:
        """Convert to JSON object."""
        return {"id": self.call_id, "operation": self.operation, "result": self.result}

    @cached_property
    def data(self) -> str:
        """Encoded event data.

        Raises:
            TypeError: If the result is not JSON serializable
        """
        return json.dumps(self.to_json())


@dataclass(frozen=True)
class ErrorFrame:
    """Terminal frame carrying a protocol-level error."""

    event: ClassVar[str] = "message"

    call_id: CallId
    operation: str
    error: GatewayError

    def to_json(self) -> dict[str, Any]:
        """Convert to JSON object."""
        return {
            "id": self.call_id,
            "operation": self.operation,
            "error": self.error.to_json(),
        }

    @cached_property
    def data(self) -> str:
        return json.dumps(self.to_json())


Frame = EndpointFrame | ResultFrame | ErrorFrame


def encode_frame(frame: Frame) -> str:
    """Encode a frame as server-sent event text, terminated by a blank line."""
    lines = [f"event: {frame.event}"]
    lines.extend(f"data: {chunk}" for chunk in frame.data.split("\n"))
    return "\n".join(lines) + "\n\n"


class EventDecoder:
    """Incremental server-sent event decoder.

    Feed it one line at a time (without the trailing newline); it returns an
    ``(event, data)`` pair whenever a blank line completes an event. Comment
    lines such as keep-alive pings are ignored.
    """

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []

    def feed_line(self, line: str) -> tuple[str, str] | None:
        line = line.rstrip("\r")
        if not line:
            if not self._data and not self._event:
                return None
            completed = (self._event or "message", "\n".join(self._data))
            self._event = ""
            self._data = []
            return completed
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def feed(self, text: str) -> list[tuple[str, str]]:
        """Decode every complete event in ``text``."""
        events = []
        for line in text.split("\n"):
            completed = self.feed_line(line)
            if completed is not None:
                events.append(completed)
        return events


def parse_frame(event: str, data: str) -> Frame:
    """Parse a received event back into a frame.

    Raises:
        ValueError: If the event is unknown or its data is malformed
    """
    match event:
        case "endpoint":
            return EndpointFrame(data)
        case "message":
            try:
                obj = json.loads(data)
            except json.JSONDecodeError as e:
                msg = f"Invalid message frame: {e}"
                raise ValueError(msg) from e
            if not isinstance(obj, dict) or not isinstance(obj.get("operation"), str):
                msg = "Message frame must be an object with an operation"
                raise ValueError(msg)
            call_id = _check_call_id(obj.get("id"))
            if "error" in obj:
                error = obj["error"]
                if not isinstance(error, dict):
                    msg = "Message frame error must be an object"
                    raise ValueError(msg)
                return ErrorFrame(call_id, obj["operation"], GatewayError.from_json(error))
            if "result" in obj:
                return ResultFrame(call_id, obj["operation"], obj["result"])
            msg = "Message frame has neither result nor error"
            raise ValueError(msg)
        case _:
            msg = f"Unknown event type: {event}"
            raise ValueError(msg)
