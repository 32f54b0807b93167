"""Session identifiers for the weathergate protocol.

A session id is an opaque token minted when a client opens its stream.
Clients echo it back as the ``session_id`` query parameter of every call.
Ids are unique for the life of the process; they are not meant to survive
a restart.
"""

from __future__ import annotations

import re
import secrets
import threading
from collections.abc import Callable, Container
from dataclasses import dataclass
from typing import Final

MAX_SESSION_ID_LENGTH = 128

# Visible ASCII only (0x21-0x7E), anchored so the whole token must match
SESSION_ID_PATTERN = re.compile(r"^[\x21-\x7E]+$")


@dataclass(frozen=True)
class SessionId:
    """Session ID - the lookup key for one live push channel."""

    value: str

    @staticmethod
    def parse(raw: object) -> SessionId:
        """Parse an untrusted session reference.

        Raises:
            ValueError: If the reference is absent or malformed
        """
        if not isinstance(raw, str) or not raw:
            msg = "session_id is required"
            raise ValueError(msg)
        if len(raw) > MAX_SESSION_ID_LENGTH:
            msg = f"session_id exceeds {MAX_SESSION_ID_LENGTH} characters"
            raise ValueError(msg)
        if not SESSION_ID_PATTERN.fullmatch(raw):
            msg = "session_id must only contain visible ASCII characters"
            raise ValueError(msg)
        return SessionId(raw)

    def __str__(self) -> str:
        return self.value


class SessionIdAllocator:
    """Thread-safe allocator for session IDs.

    Tokens are random and prefixed with a per-process sequence number, so a
    collision would need both the sequence and the random part to repeat.
    The caller can still pass the set of live ids to reject a clash outright.
    """

    def __init__(self, token_factory: Callable[[], str] | None = None) -> None:
        self._token_factory = token_factory or (lambda: secrets.token_urlsafe(16))
        self._next_sequence: int = 1
        self._lock: Final = threading.Lock()

    def allocate(self, live: Container[SessionId] = ()) -> SessionId:
        """Allocate a new session ID not present in ``live``."""
        with self._lock:
            while True:
                sequence = self._next_sequence
                self._next_sequence += 1
                session_id = SessionId(f"{sequence:x}-{self._token_factory()}")
                if session_id not in live:
                    return session_id
