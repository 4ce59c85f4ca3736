"""
In-memory registry of live interview sessions, keyed by connection identity.

Handlers for one connection run serialized on the event loop, and each one
only touches its own key, so no locking is needed. A threaded server would
have to guard this map.
"""
import logging
from typing import Dict, Iterator, List, Optional

from interview.state import InterviewSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Maps connection id -> current InterviewSession."""

    def __init__(self):
        self._sessions: Dict[str, InterviewSession] = {}

    def get(self, session_id: str) -> Optional[InterviewSession]:
        return self._sessions.get(session_id)

    def put(self, session: InterviewSession) -> None:
        self._sessions[session.session_id] = session

    def remove(self, session_id: str) -> bool:
        """Remove a session. Returns False if there was nothing to remove."""
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.debug(f"Session {session_id} removed ({len(self._sessions)} active)")
        return removed

    def sessions(self) -> List[InterviewSession]:
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
