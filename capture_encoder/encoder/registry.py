"""Process-wide collection of live session controllers."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Dict, Iterator

from capture_encoder.core.logging_utils import get_module_logger

if TYPE_CHECKING:
    from .session import SessionController


class SessionRegistry:
    """Owned by the server; every controller receives it at construction.

    Mutated only when a session is attached or disconnects.
    """

    def __init__(self) -> None:
        self.logger = get_module_logger("SessionRegistry")
        self._sessions: Dict[str, "SessionController"] = {}

    def add(self, session: "SessionController") -> None:
        self._sessions[session.session_id] = session
        self.logger.debug("Registered session %s (%d live)", session.session_id, len(self._sessions))

    def remove(self, session: "SessionController") -> bool:
        """Remove ``session``; returns False if it was not registered."""
        current = self._sessions.get(session.session_id)
        if current is not session:
            return False
        del self._sessions[session.session_id]
        self.logger.debug("Removed session %s (%d live)", session.session_id, len(self._sessions))
        return True

    def get(self, session_id: str) -> "SessionController | None":
        return self._sessions.get(session_id)

    def __contains__(self, session: object) -> bool:
        return any(s is session for s in self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator["SessionController"]:
        return iter(list(self._sessions.values()))

    async def close_all(self) -> None:
        """Disconnect every live session (server shutdown)."""
        sessions = list(self._sessions.values())
        if not sessions:
            return
        self.logger.info("Cleaning up %d live session(s)", len(sessions))
        results = await asyncio.gather(*(s.disconnect() for s in sessions), return_exceptions=True)
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                self.logger.error("Error disconnecting session %s: %s", session.session_id, result)


__all__ = ["SessionRegistry"]
