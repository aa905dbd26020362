"""
Session registry for the telephony integration.

This module provides the SessionRegistry class which maps the call identifier
assigned by the telephony provider to the live Session for that call leg. The
browser integration binds its Session to the socket lifetime and does not use it.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from voice_relay.config.constants import LOGGER_NAME
from voice_relay.errors import DuplicateSessionError, SessionNotFoundError

if TYPE_CHECKING:
    from voice_relay.bot.session import Session

logger = logging.getLogger(LOGGER_NAME)


class SessionRegistry:
    """
    Registry of active telephony sessions keyed by call identifier.

    All access goes through a single asyncio lock so that concurrent
    create/lookup/remove calls from different sockets never race.
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._sessions: Dict[str, "Session"] = {}
        self._lock = asyncio.Lock()

    async def create(self, call_id: str, session: "Session") -> None:
        """
        Register a session for a call.

        Args:
            call_id: Call identifier from the telephony start event
            session: The session that owns the call leg

        Raises:
            DuplicateSessionError: If a session is already registered for call_id
        """
        async with self._lock:
            if call_id in self._sessions:
                raise DuplicateSessionError(call_id)
            self._sessions[call_id] = session
        logger.info(f"Session registered for call: {call_id}")

    async def lookup(self, call_id: str) -> "Session":
        """
        Get the session registered for a call.

        Raises:
            SessionNotFoundError: If no session is registered for call_id
        """
        async with self._lock:
            session = self._sessions.get(call_id)
        if session is None:
            raise SessionNotFoundError(call_id)
        return session

    async def remove(self, call_id: str, session: Optional["Session"] = None) -> Optional["Session"]:
        """
        Remove the session registered for a call. Removing an unknown call is a no-op.

        Args:
            call_id: Call identifier to release
            session: If given, only remove the entry when it maps to this session

        Returns:
            The removed session, or None if nothing was removed
        """
        async with self._lock:
            current = self._sessions.get(call_id)
            if current is None or (session is not None and current is not session):
                return None
            del self._sessions[call_id]
        logger.info(f"Session removed for call: {call_id}")
        return current

    def call_ids(self) -> List[str]:
        """Snapshot of the registered call identifiers."""
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions
