"""
Emulator session state

One Session per active connection. Instruction handlers receive it by
reference and are the only code that mutates it; disconnect resets it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

import structlog

from uniprov.engine.reassembler import ChunkAccumulator
from uniprov.models import SessionState, WifiConfiguration

logger = structlog.get_logger()


@dataclass
class Session:
    """
    Per-connection protocol state.

    Attributes:
        authenticated: Set by a successful HANDSHAKE
        ssid_buffer: Pending SSID chunks
        password_buffer: Pending password chunks
        ssid: Last committed SSID
        password: Last committed password
        country: Country code from the last SET_COUNTRY
        applied: Configuration snapshot taken at the last SET_COUNTRY
    """

    authenticated: bool = False
    ssid_buffer: ChunkAccumulator = field(default_factory=ChunkAccumulator)
    password_buffer: ChunkAccumulator = field(default_factory=ChunkAccumulator)
    ssid: str = ""
    password: str = ""
    country: str = ""
    applied: Optional[WifiConfiguration] = None

    @property
    def state(self) -> SessionState:
        return SessionState.AUTHENTICATED if self.authenticated else SessionState.IDLE

    def reset(self) -> None:
        """Return every field to its initial value."""
        self.authenticated = False
        self.ssid_buffer.clear()
        self.password_buffer.clear()
        self.ssid = ""
        self.password = ""
        self.country = ""
        self.applied = None


class SessionManager:
    """
    Independently owned sessions keyed by connection id.

    The robot accepts one connection at a time; the TCP bridge may hold more,
    each with its own Session.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def open(self, connection_id: str) -> Session:
        """Create (or reinitialize) the session for a new connection."""
        session = Session()
        self._sessions[connection_id] = session
        logger.debug("session_opened", connection_id=connection_id)
        return session

    def get(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def close(self, connection_id: str) -> None:
        session = self._sessions.pop(connection_id, None)
        if session is not None:
            session.reset()
            logger.debug("session_closed", connection_id=connection_id)

    def __len__(self) -> int:
        return len(self._sessions)
