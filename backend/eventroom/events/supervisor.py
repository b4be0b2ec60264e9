"""Reconnection supervisor: grace period between a disconnect and a departure.

When a joined connection closes, a one-shot timer is armed for
(connection, room). If the participant resumes from a new connection before
the timer fires, admission has already evicted the old connection's entry
and the timer does nothing. Otherwise the departure is finalized.

There is no cancellation on resume. The expiry callback re-reads room state
when it runs, so a resume racing with the timer in the same tick resolves
to whatever the room holds at that moment.

    ATTACHED -> GRACE -> RESUMED | DEPARTED
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD_SECONDS = 10.0


class GraceState(str, Enum):
    ATTACHED = "attached"
    GRACE = "grace"
    RESUMED = "resumed"
    DEPARTED = "departed"


@dataclass
class GraceTimer:
    connection_id: str
    room_key:      str
    armed_at:      float = field(default_factory=time.monotonic)
    state:         GraceState = GraceState.GRACE
    task:          Optional[asyncio.Task] = None  # type: ignore[type-arg]


# (connection_id, room_key) -> True if the participant was removed
ExpiryCallback = Callable[[str, str], Awaitable[bool]]


class ReconnectionSupervisor:
    """Arms and tracks grace-period timers for disconnected participants."""

    def __init__(
        self,
        on_expire: ExpiryCallback,
        grace_period_seconds: float = DEFAULT_GRACE_PERIOD_SECONDS,
    ) -> None:
        self._on_expire = on_expire
        self.grace_period_seconds = grace_period_seconds
        self._timers: Dict[str, GraceTimer] = {}

    def arm(self, connection_id: str, room_key: str) -> GraceTimer:
        """Start the grace period for a connection that just closed."""
        timer = GraceTimer(connection_id=connection_id, room_key=room_key)
        timer.task = asyncio.create_task(self._run(timer))
        self._timers[connection_id] = timer
        logger.info(
            "[Supervisor] Grace period of %ss armed for %s in %s",
            self.grace_period_seconds, connection_id, room_key,
        )
        return timer

    def pending(self) -> List[GraceTimer]:
        return list(self._timers.values())

    async def _run(self, timer: GraceTimer) -> None:
        try:
            await asyncio.sleep(self.grace_period_seconds)
            departed = await self._on_expire(timer.connection_id, timer.room_key)
            if departed:
                timer.state = GraceState.DEPARTED
                logger.info(
                    "[Supervisor] Timeout reached for %s, removed from %s",
                    timer.connection_id, timer.room_key,
                )
            else:
                timer.state = GraceState.RESUMED
                logger.info(
                    "[Supervisor] %s already reconnected or properly removed from %s",
                    timer.connection_id, timer.room_key,
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"[Supervisor] Error finalizing {timer.connection_id} in {timer.room_key}: {e}",
                exc_info=True,
            )
        finally:
            if self._timers.get(timer.connection_id) is timer:
                del self._timers[timer.connection_id]

    async def wait_idle(self) -> None:
        """Wait for every armed timer to fire."""
        tasks = [t.task for t in self._timers.values() if t.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel pending timers (process shutdown only)."""
        tasks = [t.task for t in self._timers.values() if t.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        logger.info("[Supervisor] Stopped; %d pending grace timers cancelled", len(tasks))
