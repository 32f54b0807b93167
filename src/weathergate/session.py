"""Session registry - maps live session ids to their push channels.

The registry is shared by every connection's lifecycle and every inbound
call. Its critical section only touches the dict; channel I/O (including
closing channels on shutdown) always happens outside the lock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from weathergate.error import GatewayError
from weathergate.protocol.ids import SessionId, SessionIdAllocator

if TYPE_CHECKING:
    from weathergate.channel import PushChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """One streaming connection and its assigned identifier."""

    id: SessionId
    channel: PushChannel
    created_at: float = field(default_factory=time.time)


class SessionRegistry:
    """Concurrent map from session id to session.

    Responsibilities:
    1. Mint a fresh id for every registered channel
    2. Resolve ids to channels without blocking
    3. Drop entries idempotently, at the latest when the channel closes
    4. Close every live channel on shutdown
    """

    def __init__(
        self,
        allocator: SessionIdAllocator | None = None,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self._allocator = allocator or SessionIdAllocator()
        self._sessions: dict[SessionId, Session] = {}
        self._lock: Final = threading.Lock()
        self._log = log or logger

    def register(self, channel: PushChannel) -> SessionId:
        """Register a channel under a fresh session id.

        The entry is removed automatically when the channel closes.
        """
        with self._lock:
            session_id = self._allocator.allocate(self._sessions)
            self._sessions[session_id] = Session(session_id, channel)
            count = len(self._sessions)

        channel.add_close_callback(lambda _channel: self.deregister(session_id))
        self._log.debug("Registered session %s (live: %d)", session_id, count)
        return session_id

    def get(self, session_id: SessionId) -> Session | None:
        """Return the session for ``session_id``, or None."""
        with self._lock:
            return self._sessions.get(session_id)

    def lookup(self, session_id: SessionId) -> PushChannel:
        """Resolve a session id to its channel.

        Raises:
            GatewayError: NOT_FOUND if the session is not live
        """
        session = self.get(session_id)
        if session is None:
            msg = f"Session {session_id} not found"
            raise GatewayError.not_found(msg)
        return session.channel

    def deregister(self, session_id: SessionId) -> None:
        """Remove a session. Removing an unknown id is a no-op."""
        with self._lock:
            removed = self._sessions.pop(session_id, None)
            count = len(self._sessions)
        if removed is not None:
            self._log.debug("Deregistered session %s (live: %d)", session_id, count)

    def close_all(self) -> int:
        """Close every live channel and empty the registry.

        Returns:
            Number of sessions closed
        """
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            session.channel.close()
        if sessions:
            self._log.info("Closed %d live session(s)", len(sessions))
        return len(sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
