"""Presence coordinator: admits, resumes and removes room participants.

Join and Resume share one admission path:

    1. Resolve the (username, room) session.
    2. Evict any participant with the same username under another
       connection (a stale entry from before a refresh, or an older tab).
    3. Insert the participant keyed by connection ID.
    4. Send sessionEstablished and eventHistory to the admitted connection.
    5. Append a system notice and broadcast it with a participantUpdate.

Departure (explicit leave or grace-period expiry) removes the participant,
announces it to the remaining members and deletes the room once empty.
Only an explicit leave drops the session.

Every connection is attached to at most one room at a time. Attachments are
kept here, keyed by connection ID, and exist exactly as long as the
connection's participant entry does.

Nothing here awaits: outbound events are only queued on the ConnectionHub.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import InvalidSession
from .messages import MessageRouter
from .schemas import OutboundEvent, Participant, PresenceChange
from .sessions import Session, SessionRegistry
from .store import Room, RoomStore

logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    room_key:   str
    username:   str
    session_id: str


class PresenceCoordinator:

    def __init__(self, store: RoomStore, sessions: SessionRegistry, router: MessageRouter) -> None:
        self.store = store
        self.sessions = sessions
        self.router = router
        self.hub = router.hub
        self._attachments: Dict[str, Attachment] = {}

    def attachment(self, connection_id: str) -> Optional[Attachment]:
        return self._attachments.get(connection_id)

    def is_joined(self, connection_id: str, room_key: str) -> bool:
        room = self.store.get(room_key)
        return room is not None and connection_id in room.participants

    # =========================================================================
    # Admission
    # =========================================================================

    def join(self, connection_id: str, username: str, room_key: str) -> Session:
        """Admit a connection to *room_key*, creating the room if needed."""
        logger.info("[Presence] %s is joining event %s", username, room_key)
        self._leave_other_room(connection_id, room_key)

        session = self.sessions.resolve_or_create(username, room_key, connection_id)
        room = self.store.get_or_create(room_key)
        self._admit(room, connection_id, session, f"{username} has joined the event")
        return session

    def resume(
        self,
        connection_id: str,
        username: str,
        room_key: str,
        claimed_session_id: Optional[str] = None,
    ) -> Session:
        """Re-admit a connection after a refresh or reconnect.

        Raises:
            InvalidSession: username or room_key is empty, or the room does not
                exist. Nothing is mutated in that case.
        """
        room = self.store.get(room_key) if room_key else None
        if room is None or not username:
            logger.info(
                "[Presence] Invalid session check: event %r doesn't exist or username not provided",
                room_key,
            )
            raise InvalidSession()

        # departs a different room only, so *room* stays live
        self._leave_other_room(connection_id, room_key)

        session = self.sessions.resolve_or_create(username, room_key, connection_id)
        if claimed_session_id and claimed_session_id != session.session_id:
            logger.info(
                "[Presence] %s claimed session %s in %s; registry holds %s",
                username, claimed_session_id, room_key, session.session_id,
            )

        self._admit(room, connection_id, session, f"{username} has reconnected to the event")
        logger.info("[Presence] Session resumed: %s for %s in %s", session.session_id, username, room_key)
        return session

    def _admit(self, room: Room, connection_id: str, session: Session, notice: str) -> Participant:
        self._evict_stale(room, session.username, connection_id)

        participant = Participant(
            id=connection_id,
            username=session.username,
            sessionId=session.session_id,
        )
        room.participants[connection_id] = participant
        self._attachments[connection_id] = Attachment(
            room_key=room.key,
            username=session.username,
            session_id=session.session_id,
        )

        self.hub.send(
            connection_id,
            OutboundEvent.SESSION_ESTABLISHED.value,
            {"sessionId": session.session_id},
        )
        self.hub.send(
            connection_id,
            OutboundEvent.EVENT_HISTORY.value,
            {
                "messages": [m.model_dump(mode="json") for m in room.messages],
                "participants": _dump_participants(room.participant_list()),
            },
        )

        self.router.post_system(room, notice)
        self.router.broadcast(room, OutboundEvent.PARTICIPANT_UPDATE, {
            "type": PresenceChange.JOINED.value,
            "participant": participant.model_dump(mode="json"),
            "participants": _dump_participants(room.participant_list()),
        })
        return participant

    def _evict_stale(self, room: Room, username: str, connection_id: str) -> None:
        stale = [
            cid for cid, p in room.participants.items()
            if p.username == username and cid != connection_id
        ]
        for cid in stale:
            logger.info("[Presence] Removing previous connection for %s: %s", username, cid)
            del room.participants[cid]
            self._drop_attachment(cid, room.key)

    def _leave_other_room(self, connection_id: str, room_key: str) -> None:
        current = self._attachments.get(connection_id)
        if current is not None and current.room_key != room_key:
            logger.info(
                "[Presence] Connection %s moves from %s to %s", connection_id, current.room_key, room_key
            )
            self._depart(connection_id, current.room_key)

    # =========================================================================
    # Departure
    # =========================================================================

    def leave(self, connection_id: str) -> bool:
        """Explicit leave: depart the attached room and drop the session."""
        attachment = self._attachments.get(connection_id)
        if attachment is None:
            logger.debug("[Presence] Leave from unattached connection %s ignored", connection_id)
            return False

        logger.info("[Presence] %s is leaving event %s", attachment.username, attachment.room_key)
        departed = self._depart(connection_id, attachment.room_key)
        self.sessions.drop(attachment.session_id, attachment.username, attachment.room_key)
        return departed is not None

    def finalize(self, connection_id: str, room_key: str) -> bool:
        """Grace-period expiry: depart if still present, keep the session."""
        return self._depart(connection_id, room_key) is not None

    def _depart(self, connection_id: str, room_key: str) -> Optional[Participant]:
        room = self.store.get(room_key)
        if room is None or connection_id not in room.participants:
            logger.debug("[Presence] %s already gone from %s", connection_id, room_key)
            return None

        participant = room.participants.pop(connection_id)
        self._drop_attachment(connection_id, room_key)
        # remove before fanning out so no reader sees an empty room
        self.store.remove_if_empty(room_key)

        self.router.post_system(room, f"{participant.username} has left the event")
        self.router.broadcast(room, OutboundEvent.PARTICIPANT_UPDATE, {
            "type": PresenceChange.LEFT.value,
            "participant": participant.model_dump(mode="json"),
            "participants": _dump_participants(room.participant_list()),
        })
        return participant

    def _drop_attachment(self, connection_id: str, room_key: str) -> None:
        current = self._attachments.get(connection_id)
        if current is not None and current.room_key == room_key:
            del self._attachments[connection_id]


def _dump_participants(participants: List[Participant]) -> List[dict]:
    return [p.model_dump(mode="json") for p in participants]
