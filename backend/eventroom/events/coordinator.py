"""Event room coordinator.

Owns all shared state for event rooms (room store, session registry, open
connections, attachments) and is the only thing that mutates it.

Concurrency:
    Every inbound connection event and every grace-timer expiry runs under a
    single asyncio.Lock. Handlers run to completion one at a time, which
    gives per-room ordering in receive order.

    No network I/O happens under the lock. Outbound events are queued on
    each connection's FIFO outbox and written by that connection's own
    writer task, so message log order is the delivery order for every member
    and a client that stops reading cannot hold up anyone else.

    The query methods (list_summaries, debug_snapshot) are synchronous reads
    and never wait on the lock.
"""
import asyncio
import logging
from typing import List, Optional

from eventroom.config import get_config
from .channels import Channel, ConnectionHub
from .errors import InvalidSession
from .messages import MessageRouter
from .presence import PresenceCoordinator
from .schemas import DebugSnapshot, EventMessage, OutboundEvent, RoomSummary
from .sessions import SessionRegistry
from .store import RoomStore
from .supervisor import DEFAULT_GRACE_PERIOD_SECONDS, ReconnectionSupervisor

logger = logging.getLogger(__name__)


class EventCoordinator:
    """Single entry point for connection events, serialized by one lock."""

    def __init__(self, grace_period_seconds: float = DEFAULT_GRACE_PERIOD_SECONDS) -> None:
        self.hub = ConnectionHub()
        self.store = RoomStore()
        self.sessions = SessionRegistry()
        self.router = MessageRouter(self.hub)
        self.presence = PresenceCoordinator(self.store, self.sessions, self.router)
        self.supervisor = ReconnectionSupervisor(self._finalize_departure, grace_period_seconds)
        self._lock = asyncio.Lock()

    # =========================================================================
    # Connection Events
    # =========================================================================

    def connect(self, channel: Channel) -> None:
        """Start routing events to a newly opened channel."""
        self.hub.register(channel)
        logger.info("[Coordinator] New client connected: %s", channel.connection_id)

    async def check_session(
        self,
        connection_id: str,
        event_id: str,
        username: str,
        session_id: Optional[str] = None,
    ) -> Optional[str]:
        """Handle ``checkSession``. Returns the session ID, or None on sessionError."""
        async with self._lock:
            try:
                session = self.presence.resume(connection_id, username, event_id, session_id)
            except InvalidSession as exc:
                self.hub.send(
                    connection_id, OutboundEvent.SESSION_ERROR.value, {"message": exc.message}
                )
                return None
            return session.session_id

    async def join_event(self, connection_id: str, event_id: str, username: str) -> str:
        """Handle ``joinEvent``. Returns the session ID."""
        async with self._lock:
            session = self.presence.join(connection_id, username, event_id)
            return session.session_id

    async def send_message(self, connection_id: str, text: str) -> Optional[EventMessage]:
        """Handle ``sendMessage``. No-op unless the connection is joined to a room."""
        async with self._lock:
            if not text or not text.strip():
                logger.debug("[Coordinator] Blank message from %s ignored", connection_id)
                return None

            attachment = self.presence.attachment(connection_id)
            room = self.store.get(attachment.room_key) if attachment else None
            participant = room.participants.get(connection_id) if room else None
            if room is None or participant is None:
                logger.debug("[Coordinator] Message from unattached connection %s ignored", connection_id)
                return None

            return self.router.post_chat(room, participant, text)

    async def leave_event(self, connection_id: str) -> bool:
        """Handle ``leaveEvent``. Returns True if a participant was removed."""
        async with self._lock:
            return self.presence.leave(connection_id)

    async def disconnect(self, connection_id: str) -> bool:
        """Handle a closed connection. Returns True if a grace period was armed."""
        async with self._lock:
            channel = self.hub.unregister(connection_id)
            logger.info("[Coordinator] Client disconnected: %s", connection_id)

            # keep the participant for now, they might be refreshing
            attachment = self.presence.attachment(connection_id)
            armed = attachment is not None and self.presence.is_joined(connection_id, attachment.room_key)
            if armed:
                self.supervisor.arm(connection_id, attachment.room_key)

        if channel is not None:
            await channel.close()
        return armed

    async def _finalize_departure(self, connection_id: str, room_key: str) -> bool:
        async with self._lock:
            return self.presence.finalize(connection_id, room_key)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_summaries(self) -> List[RoomSummary]:
        return self.store.list_summaries()

    def debug_snapshot(self) -> DebugSnapshot:
        return DebugSnapshot(
            events=self.store.debug_rooms(),
            sessionCount=self.sessions.count(),
            userSessionCount=self.sessions.key_count(),
        )

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()
        await self.hub.close_all()


_coordinator: Optional[EventCoordinator] = None


def get_coordinator() -> EventCoordinator:
    """Return the process-wide coordinator, creating it from config on first use."""
    global _coordinator
    if _coordinator is None:
        _coordinator = EventCoordinator(
            grace_period_seconds=get_config().presence.grace_period_seconds
        )
    return _coordinator


def set_coordinator(coordinator: Optional[EventCoordinator]) -> None:
    """Replace the process-wide coordinator (None resets it)."""
    global _coordinator
    _coordinator = coordinator
