import asyncio
import threading
import time
from typing import Callable, Dict, List, Optional

from constants import ROOM_IDLE_GRACE_SECONDS, ROOM_SWEEP_INTERVAL_SECONDS
from logging_config import get_logger
from room import RoomCoordinator

logger = get_logger(__name__)


class RoomRegistry:
    """
    Maps a couple id to its single RoomCoordinator.

    Coordinators are created on first access. Rooms that stay empty for longer than
    the grace period are dropped by ``sweep_idle``; a later access simply creates a
    fresh, empty coordinator.
    """

    def __init__(self, idle_grace_seconds: float = ROOM_IDLE_GRACE_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.idle_grace_seconds = idle_grace_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._rooms: Dict[str, RoomCoordinator] = {}

    def get_or_create(self, couple_id: str) -> RoomCoordinator:
        with self._lock:
            room = self._rooms.get(couple_id)
            if room is None:
                room = RoomCoordinator(couple_id, clock=self._clock)
                self._rooms[couple_id] = room
                logger.debug(f"Created room coordinator for couple {couple_id}")
            return room

    def get(self, couple_id: str) -> Optional[RoomCoordinator]:
        with self._lock:
            return self._rooms.get(couple_id)

    def sweep_idle(self) -> List[str]:
        """Drop coordinators that have been empty for the whole grace period."""
        with self._lock:
            idle = [cid for cid, room in self._rooms.items() if room.is_idle(self.idle_grace_seconds)]
            for couple_id in idle:
                del self._rooms[couple_id]
        if idle:
            logger.info(f"Evicted {len(idle)} idle rooms ({len(self._rooms)} remaining)")
        return idle

    def connection_count(self) -> int:
        with self._lock:
            return sum(room.connection_count for room in self._rooms.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def __contains__(self, couple_id: str) -> bool:
        with self._lock:
            return couple_id in self._rooms


async def run_idle_sweeper(registry: RoomRegistry, interval: float = ROOM_SWEEP_INTERVAL_SECONDS):
    """Background task that periodically reclaims empty rooms."""
    logger.info(f"Starting idle room sweeper (interval {interval}s, grace {registry.idle_grace_seconds}s)")
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                registry.sweep_idle()
            except Exception as e:
                logger.error(f"Error sweeping idle rooms: {e}", exc_info=True)
    except asyncio.CancelledError:
        logger.info("Idle room sweeper cancelled")
        raise


room_registry = RoomRegistry()
