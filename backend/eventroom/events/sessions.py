"""Session registry keyed both by session ID and by (username, room).

A session survives reconnects: the same (username, room) pair always
resolves to the same session ID until the session is dropped on an
explicit leave.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class Session:
    session_id:    str
    username:      str
    room_key:      str
    connection_id: Optional[str] = None


class SessionRegistry:
    """In-memory registry; entries live until drop() or process exit."""

    def __init__(self) -> None:
        self._by_id:  Dict[str, Session] = {}
        self._by_key: Dict[Tuple[str, str], str] = {}

    def resolve_or_create(
        self,
        username: str,
        room_key: str,
        connection_id: Optional[str] = None,
    ) -> Session:
        """Return the live session for (username, room_key), minting one if absent.

        The returned session's connection_id is updated to *connection_id*.
        """
        key = (username, room_key)
        session_id = self._by_key.get(key)
        session = self._by_id.get(session_id) if session_id else None

        if session is None:
            session = Session(
                session_id=str(uuid.uuid4()),
                username=username,
                room_key=room_key,
            )
            self._by_id[session.session_id] = session
            self._by_key[key] = session.session_id
            logger.info(
                "[Sessions] Created session %s for %s in %s",
                session.session_id, username, room_key,
            )

        session.connection_id = connection_id
        return session

    def drop(self, session_id: str, username: str, room_key: str) -> None:
        """Remove both lookup entries (no-op if absent)."""
        removed = self._by_id.pop(session_id, None)
        self._by_key.pop((username, room_key), None)
        if removed is not None:
            logger.info("[Sessions] Dropped session %s for %s in %s", session_id, username, room_key)

    def get(self, session_id: str) -> Optional[Session]:
        return self._by_id.get(session_id)

    def lookup(self, username: str, room_key: str) -> Optional[Session]:
        session_id = self._by_key.get((username, room_key))
        return self._by_id.get(session_id) if session_id else None

    def count(self) -> int:
        return len(self._by_id)

    def key_count(self) -> int:
        return len(self._by_key)
