import asyncio
from typing import Callable, List, Optional

from backend import RoomStore
from constants import ROOM_IDLE_TIMEOUT_SECONDS, ROOM_SWEEP_INTERVAL_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)


class IdleReaper:
    """Background task that deletes rooms which have stayed empty too long."""

    def __init__(
        self,
        store: RoomStore,
        idle_timeout: float = ROOM_IDLE_TIMEOUT_SECONDS,
        interval: float = ROOM_SWEEP_INTERVAL_SECONDS,
        on_evict: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.idle_timeout = idle_timeout
        self.interval = interval
        self.on_evict = on_evict
        self._task: Optional[asyncio.Task] = None

    def sweep(self) -> List[str]:
        """Delete every room empty for at least ``idle_timeout`` seconds."""
        now = self.store.clock()
        timeout_ms = self.idle_timeout * 1000
        evicted = []
        for room in self.store.rooms():
            if room.empty_since is None or now - room.empty_since < timeout_ms:
                continue
            # the room may have been deleted or refilled since the snapshot
            if self.store.get(room.code) is not room or not room.is_empty:
                continue
            self.store.delete(room.code)
            evicted.append(room.code)
            logger.info(f"Room {room.code} removed after {(now - room.empty_since) / 1000:.0f}s empty")
            if self.on_evict:
                self.on_evict(room.code)
        return evicted

    async def run(self):
        logger.info(f"Idle reaper started: timeout={self.idle_timeout}s interval={self.interval}s")
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    self.sweep()
                except Exception as e:
                    logger.error(f"Idle sweep failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Idle reaper stopped")
            raise

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
