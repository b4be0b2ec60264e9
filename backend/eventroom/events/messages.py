"""Message router: appends to a room's log, then fans out to its members.

Appending always happens before the broadcast, so a room's log order is
the order in which every member receives ``newMessage`` events.
"""
import itertools
import logging
from typing import Any

from .channels import ConnectionHub
from .schemas import (
    SYSTEM_SENDER,
    SYSTEM_SENDER_ID,
    EventMessage,
    MessageKind,
    OutboundEvent,
    Participant,
)
from .store import Room

logger = logging.getLogger(__name__)


class MessageRouter:
    """Builds messages with process-wide monotonic IDs and broadcasts them."""

    def __init__(self, hub: ConnectionHub) -> None:
        self.hub = hub
        self._ids = itertools.count(1)

    def _append(self, room: Room, sender: str, sender_id: str, text: str, kind: MessageKind) -> EventMessage:
        message = EventMessage(
            id=next(self._ids),
            sender=sender,
            senderId=sender_id,
            text=text,
            type=kind,
        )
        room.messages.append(message)
        return message

    def broadcast(self, room: Room, event: OutboundEvent, payload: Any) -> int:
        """Queue *event* for every open connection currently joined to *room*."""
        return self.hub.broadcast(room.connection_ids(), event.value, payload)

    def post_chat(self, room: Room, participant: Participant, text: str) -> EventMessage:
        message = self._append(room, participant.username, participant.id, text, MessageKind.CHAT)
        logger.debug(
            "[Router] Message from %s in %s: %s", participant.username, room.key, text[:30]
        )
        self.broadcast(room, OutboundEvent.NEW_MESSAGE, message.model_dump(mode="json"))
        return message

    def post_system(self, room: Room, text: str) -> EventMessage:
        message = self._append(room, SYSTEM_SENDER, SYSTEM_SENDER_ID, text, MessageKind.SYSTEM)
        self.broadcast(room, OutboundEvent.NEW_MESSAGE, message.model_dump(mode="json"))
        return message
