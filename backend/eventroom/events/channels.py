"""Connection channels and the hub that delivers named events to them.

A Channel is one client's duplex link. The coordinator only ever talks to
channels through the ConnectionHub, addressing them by connection ID.

Delivery is fire-and-forget: ``deliver`` never waits on the network. A
QueuedChannel puts each event on its own FIFO outbox and a writer task
drains it to the socket, so a client that stops reading only ever delays
itself. A send that fails is logged and the channel stops writing; the
transport layer notices the broken connection on its own receive loop and
reports the disconnect.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Events held for a client that is not reading before new ones are dropped
DEFAULT_OUTBOX_SIZE = 1000


class Channel(ABC):
    """A single client's connection, able to receive named events."""

    def __init__(self, connection_id: Optional[str] = None) -> None:
        self.connection_id = connection_id or str(uuid.uuid4())

    @abstractmethod
    def deliver(self, event: str, payload: Any) -> bool:
        """Hand a named event over for sending without waiting on I/O.

        Returns:
            False if the event was dropped.
        """

    async def close(self) -> None:
        """Stop sending; pending events are discarded."""


class QueuedChannel(Channel):
    """Channel with a FIFO outbox drained by a dedicated writer task."""

    def __init__(
        self,
        connection_id: Optional[str] = None,
        max_pending: int = DEFAULT_OUTBOX_SIZE,
    ) -> None:
        super().__init__(connection_id)
        self._outbox: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue(maxsize=max_pending)
        self._writer: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._outbox.qsize()

    @abstractmethod
    async def write(self, event: str, payload: Any) -> None:
        """Put one event on the wire."""

    def deliver(self, event: str, payload: Any) -> bool:
        if self._closed:
            return False
        try:
            self._outbox.put_nowait((event, payload))
        except asyncio.QueueFull:
            logger.warning(
                "[Channel] Outbox full for %s, dropping %s", self.connection_id, event
            )
            return False
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())
        return True

    async def _drain(self) -> None:
        while True:
            event, payload = await self._outbox.get()
            try:
                await self.write(event, payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Failed to send {event} to connection {self.connection_id}: {e}")
                self._closed = True
                self._discard_pending()
                return
            finally:
                self._outbox.task_done()

    def _discard_pending(self) -> None:
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued event has been written."""
        if self._closed or self._writer is None:
            return
        await self._outbox.join()

    async def close(self) -> None:
        self._closed = True
        writer, self._writer = self._writer, None
        if writer is None:
            return
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        self._discard_pending()


class WebSocketChannel(QueuedChannel):
    """Channel over a FastAPI WebSocket using ``{"event", "data"}`` frames."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        super().__init__(connection_id)
        self.websocket = websocket

    async def write(self, event: str, payload: Any) -> None:
        await self.websocket.send_json({"event": event, "data": payload})


class ConnectionHub:
    """Tracks open channels and fans events out to them."""

    def __init__(self) -> None:
        # connection_id -> Channel, only while the connection is open
        self._channels: Dict[str, Channel] = {}

    def register(self, channel: Channel) -> None:
        self._channels[channel.connection_id] = channel
        logger.debug("[Hub] Registered connection %s", channel.connection_id)

    def unregister(self, connection_id: str) -> Optional[Channel]:
        """Stop routing to a connection. The caller closes the returned channel."""
        return self._channels.pop(connection_id, None)

    def is_open(self, connection_id: str) -> bool:
        return connection_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)

    def send(self, connection_id: str, event: str, payload: Any) -> bool:
        """Queue an event for one connection. Returns False if it is closed or full."""
        channel = self._channels.get(connection_id)
        if channel is None:
            logger.debug("[Hub] Dropping %s for closed connection %s", event, connection_id)
            return False
        return channel.deliver(event, payload)

    def broadcast(self, connection_ids: Iterable[str], event: str, payload: Any) -> int:
        """Queue an event for every open connection in *connection_ids*.

        Returns:
            Number of connections the event was queued for.
        """
        channels: List[Channel] = [
            self._channels[cid] for cid in connection_ids if cid in self._channels
        ]
        return sum(1 for channel in channels if channel.deliver(event, payload))

    async def close_all(self) -> None:
        channels = list(self._channels.values())
        self._channels.clear()
        if channels:
            await asyncio.gather(*[c.close() for c in channels], return_exceptions=True)
