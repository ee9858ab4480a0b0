from typing import Dict, Iterator, List, Optional

from logging_config import get_logger
from room_state import Clock, Room, now_ms

logger = get_logger(__name__)


class RoomStore:
    """In-memory registry of rooms keyed by room code.

    Starts empty and lives for the lifetime of the process; nothing is
    persisted. Swapping this class is the extension point for a shared
    backend.
    """

    def __init__(self, clock: Clock = now_ms):
        self.clock = clock
        self._rooms: Dict[str, Room] = {}
        logger.info("Initializing in-memory RoomStore")

    def create(self, room_code: str) -> Room:
        """Create a room, or return the existing one with that code."""
        room = self._rooms.get(room_code)
        if room is not None:
            logger.debug(f"Room {room_code} already exists")
            return room
        room = Room(code=room_code, clock=self.clock)
        self._rooms[room_code] = room
        logger.info(f"Room {room_code} created ({len(self._rooms)} rooms active)")
        return room

    get_or_create = create

    def get(self, room_code: str) -> Optional[Room]:
        return self._rooms.get(room_code)

    def delete(self, room_code: str) -> bool:
        room = self._rooms.pop(room_code, None)
        if room is None:
            logger.debug(f"Delete skipped: room {room_code} not found")
            return False
        logger.info(f"Room {room_code} deleted ({len(self._rooms)} rooms active)")
        return True

    def rooms(self) -> List[Room]:
        """Snapshot of all rooms; safe to iterate while rooms come and go."""
        return list(self._rooms.values())

    def rooms_with_member(self, connection_id: str) -> List[Room]:
        """Rooms the connection is a member of. Linear scan over all rooms."""
        return [room for room in self.rooms() if room.has_member(connection_id)]

    def clear(self):
        self._rooms.clear()

    def __contains__(self, room_code: str) -> bool:
        return room_code in self._rooms

    def __iter__(self) -> Iterator[Room]:
        return iter(self.rooms())

    def __len__(self) -> int:
        return len(self._rooms)


room_store = RoomStore()
