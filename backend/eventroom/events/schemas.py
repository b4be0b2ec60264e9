"""Data models and wire payloads for event rooms.

Outbound models are serialized with ``model_dump(mode="json")`` and use the
camelCase field names the browser client expects.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Sender fields used for coordinator-generated messages
SYSTEM_SENDER = "System"
SYSTEM_SENDER_ID = "system"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =============================================================================
# Protocol Event Names
# =============================================================================


class InboundEvent(str, Enum):
    """Events a client may send over its connection."""
    CHECK_SESSION = "checkSession"
    JOIN_EVENT = "joinEvent"
    SEND_MESSAGE = "sendMessage"
    LEAVE_EVENT = "leaveEvent"


class OutboundEvent(str, Enum):
    """Events the coordinator sends to clients."""
    SESSION_ESTABLISHED = "sessionEstablished"
    SESSION_ERROR = "sessionError"
    EVENT_HISTORY = "eventHistory"
    NEW_MESSAGE = "newMessage"
    PARTICIPANT_UPDATE = "participantUpdate"
    ERROR = "error"


# =============================================================================
# Data Models
# =============================================================================


class MessageKind(str, Enum):
    """Kind of entry in a room's message log.

    Attributes:
        CHAT: Authored by a participant.
        SYSTEM: Generated by the coordinator (join/leave/reconnect notices).
    """
    CHAT = "chat"
    SYSTEM = "system"


class PresenceChange(str, Enum):
    JOINED = "joined"
    LEFT = "left"


class Participant(BaseModel):
    """A connection's live membership record within one room.

    Attributes:
        id: Connection identifier the participant is joined through.
        username: Self-asserted display name.
        sessionId: Session identifier for the (username, room) pair.
    """
    id: str = Field(..., description="Connection ID")
    username: str = Field(..., description="Display name")
    sessionId: str = Field(..., description="Session ID")


class EventMessage(BaseModel):
    """Entry in a room's message log. Immutable once appended.

    Attributes:
        id: Process-wide monotonic message number.
        sender: Sender display name ("System" for system messages).
        senderId: Sender connection ID ("system" for system messages).
        text: Message body.
        timestamp: ISO-8601 UTC timestamp with millisecond precision and a Z suffix.
        type: chat or system.
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Monotonic message ID")
    sender: str = Field(..., description="Sender display name")
    senderId: str = Field(..., description="Sender connection ID or 'system'")
    text: str = Field(..., description="Message text")
    timestamp: str = Field(default_factory=_utc_now_iso, description="ISO-8601 UTC timestamp")
    type: MessageKind = Field(default=MessageKind.CHAT, description="chat or system")


# =============================================================================
# Inbound Payloads
# =============================================================================


class JoinEventPayload(BaseModel):
    eventId: str = Field(..., min_length=1, description="Room key to join")
    username: str = Field(..., min_length=1, description="Display name")


class CheckSessionPayload(BaseModel):
    """Resume request sent after a refresh or reconnect.

    Fields default to empty so that missing values surface as a session
    error rather than a payload validation error.
    """
    eventId: str = ""
    username: str = ""
    sessionId: Optional[str] = None


# =============================================================================
# Query Surface
# =============================================================================


class RoomSummary(BaseModel):
    id: str
    participantCount: int


class RoomDebugInfo(BaseModel):
    id: str
    participants: List[Participant]
    messageCount: int


class DebugSnapshot(BaseModel):
    events: List[RoomDebugInfo]
    sessionCount: int
    userSessionCount: int
