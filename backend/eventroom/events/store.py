"""Room store: the set of live rooms with their participants and message logs.

A room is created lazily on the first join and removed as soon as its
participant mapping becomes empty.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .schemas import EventMessage, Participant, RoomDebugInfo, RoomSummary

logger = logging.getLogger(__name__)


@dataclass
class Room:
    key: str
    # connection_id -> Participant
    participants: Dict[str, Participant] = field(default_factory=dict)
    # append-only, insertion order is broadcast order
    messages: List[EventMessage] = field(default_factory=list)

    def participant_list(self) -> List[Participant]:
        return list(self.participants.values())

    def connection_ids(self) -> List[str]:
        return list(self.participants.keys())

    def is_empty(self) -> bool:
        return not self.participants


class RoomStore:
    """Owns every live Room, keyed by room key."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}

    def get_or_create(self, room_key: str) -> Room:
        room = self._rooms.get(room_key)
        if room is None:
            room = Room(key=room_key)
            self._rooms[room_key] = room
            logger.info("[Rooms] Created room %s", room_key)
        return room

    def get(self, room_key: str) -> Optional[Room]:
        return self._rooms.get(room_key)

    def remove_if_empty(self, room_key: str) -> bool:
        """Delete the room iff it has no participants. Returns True if removed."""
        room = self._rooms.get(room_key)
        if room is None or not room.is_empty():
            return False
        del self._rooms[room_key]
        logger.info("[Rooms] Room %s removed as it has no participants", room_key)
        return True

    def __contains__(self, room_key: str) -> bool:
        return room_key in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def list_summaries(self) -> List[RoomSummary]:
        return [
            RoomSummary(id=key, participantCount=len(room.participants))
            for key, room in list(self._rooms.items())
        ]

    def debug_rooms(self) -> List[RoomDebugInfo]:
        return [
            RoomDebugInfo(
                id=key,
                participants=room.participant_list(),
                messageCount=len(room.messages),
            )
            for key, room in list(self._rooms.items())
        ]
