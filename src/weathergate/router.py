"""Request router - delivers inbound calls to the owning session's dispatcher."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from weathergate.error import GatewayError
from weathergate.protocol.ids import SessionId
from weathergate.protocol.wire import CallRequest

if TYPE_CHECKING:
    from weathergate.dispatcher import ProtocolDispatcher
    from weathergate.session import SessionRegistry

logger = logging.getLogger(__name__)


class RequestRouter:
    """Resolves a session reference and hands the call to the dispatcher.

    Routing only confirms delivery: the returned task completes once the
    call's frame has been written (or dropped), independently of the
    inbound request's acknowledgement.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        dispatcher: ProtocolDispatcher,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self._log = log or logger

    def route(self, raw_session_id: object, payload: Any) -> asyncio.Task[None]:
        """Route one call.

        Args:
            raw_session_id: The untrusted session reference from the request
            payload: The decoded call body

        Returns:
            The task executing the call

        Raises:
            GatewayError: BAD_REQUEST for a malformed session reference or
                call envelope, NOT_FOUND for a session that is not live
        """
        try:
            session_id = SessionId.parse(raw_session_id)
        except ValueError as e:
            raise GatewayError.bad_request(str(e)) from e

        try:
            call = CallRequest.from_json(payload)
        except ValueError as e:
            raise GatewayError.bad_request(str(e)) from e

        channel = self.registry.lookup(session_id)
        self._log.debug("Routing %s (id=%r) to session %s", call.operation, call.call_id, session_id)
        return self.dispatcher.submit(call, channel)
