"""Event routing for the room WebSocket protocol.

``EventRouter`` turns validated inbound events into ``Room`` / ``RoomStore``
operations and emits the resulting broadcasts. Each room-mutating handler
holds that room's lock across the mutation and its broadcasts, so members
of a room receive messages in the order the operations were applied.
Rooms never share a lock.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Protocol, Tuple

from pydantic import ValidationError

from backend import RoomStore
from constants import LOAD_ERROR_SKIP_DELAY_SECONDS, MAX_CONSECUTIVE_LOAD_FAILURES
from logging_config import get_logger
from resolver import AudioResolver
from room_state import Member, PlaybackState, Room
from schemas.events import (
    members_payload,
    parse_inbound,
    playback_payload,
    queue_payload,
    search_results_payload,
    snapshot_payload,
)

logger = get_logger(__name__)

NO_RESULTS_MESSAGE = "No results found"
SEARCH_FAILED_MESSAGE = "Search failed. Try again."
RETRIES_EXHAUSTED_MESSAGE = "Playback stopped after repeated load failures"


class Broadcaster(Protocol):
    async def send(self, connection_id: str, event: str, data: Any = None): ...

    async def broadcast(self, connection_ids: Iterable[str], event: str, data: Any = None): ...


class EventRouter:
    def __init__(
        self,
        store: RoomStore,
        broadcaster: Broadcaster,
        resolver: AudioResolver,
        max_consecutive_failures: int = MAX_CONSECUTIVE_LOAD_FAILURES,
        skip_delay: float = LOAD_ERROR_SKIP_DELAY_SECONDS,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.resolver = resolver
        self.max_consecutive_failures = max_consecutive_failures
        self.skip_delay = skip_delay
        self._locks: Dict[str, asyncio.Lock] = {}
        # Format: {room_code: (generation, task)}
        self._pending_skips: Dict[str, Tuple[int, asyncio.Task]] = {}
        self._handlers = {
            "join_room": self.on_join_room,
            "search_query": self.on_search_query,
            "request_song": self.on_request_song,
            "play_track": self.on_play_track,
            "pause_track": self.on_pause_track,
            "seek_track": self.on_seek_track,
            "skip_track": self.on_skip_track,
            "song_ended": self.on_song_ended,
            "song_load_error": self.on_song_load_error,
            "remove_from_queue": self.on_remove_from_queue,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def dispatch(self, connection_id: str, raw: Any):
        """Validate one decoded frame and run its handler.

        Invalid frames are dropped. Handler failures are logged and never
        propagate to the connection loop.
        """
        try:
            message = parse_inbound(raw)
        except ValidationError as e:
            event = raw.get("event") if isinstance(raw, dict) else None
            logger.warning(f"Dropping invalid '{event}' frame from {connection_id}: {e.error_count()} error(s)")
            return

        handler = self._handlers[message.event]
        try:
            await handler(connection_id, message.data)
        except Exception as e:
            logger.error(f"Error handling '{message.event}' from {connection_id}: {e}", exc_info=True)

    async def disconnect(self, connection_id: str):
        """Remove a vanished connection from every room it had joined."""
        try:
            for room in self.store.rooms_with_member(connection_id):
                async with self._lock(room.code):
                    member = room.leave(connection_id)
                    if member is not None:
                        logger.info(f"{member.display_name} left {room.code}")
                        await self._broadcast(room, "update_users", members_payload(room.members.values()))
        except Exception as e:
            logger.error(f"Error handling disconnect of {connection_id}: {e}", exc_info=True)

    def forget(self, room_code: str):
        """Drop per-room bookkeeping once a room is deleted."""
        self._cancel_pending_skip(room_code)
        lock = self._locks.get(room_code)
        # a held lock stays so a rejoin under the same code still queues behind its holder
        if lock is not None and not lock.locked():
            del self._locks[room_code]

    async def shutdown(self):
        tasks = [task for _, task in self._pending_skips.values()]
        self._pending_skips.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def on_join_room(self, connection_id: str, payload):
        username = (payload.username or "").strip()
        member = Member(connection_id=connection_id, display_name=username or f"User {connection_id[:4]}")
        async with self._lock(payload.room_code):
            room = self.store.get_or_create(payload.room_code)
            room.join(member)
            await self._broadcast(room, "update_users", members_payload(room.members.values()))
            # Only the joiner needs the full state; everyone else is current
            await self.broadcaster.send(connection_id, "sync_state", snapshot_payload(room.compute_sync_snapshot()))

    async def on_search_query(self, connection_id: str, payload):
        try:
            results = await self.resolver.search_async(payload.text)
        except Exception as e:
            logger.warning(f"Search for '{payload.text}' failed: {e}")
            await self.broadcaster.send(connection_id, "song_error", SEARCH_FAILED_MESSAGE)
            await self.broadcaster.send(connection_id, "search_results", [])
            return

        await self.broadcaster.send(connection_id, "search_results", search_results_payload(results))
        if not results:
            await self.broadcaster.send(connection_id, "song_error", NO_RESULTS_MESSAGE)

    async def on_request_song(self, connection_id: str, payload):
        async with self._locked_room(payload.room_code, "request_song") as room:
            if room is None:
                return
            room.enqueue(payload.source_id, payload.title, payload.thumbnail, requested_by=connection_id)
            if room.is_idle:
                await self._advance(room)
            else:
                await self._broadcast(room, "queue_updated", queue_payload(room.queue))

    async def on_play_track(self, connection_id: str, payload):
        async with self._locked_room(payload.room_code, "play_track") as room:
            if room is not None and room.set_playing(True):
                await self._broadcast(room, "receive_play")

    async def on_pause_track(self, connection_id: str, payload):
        async with self._locked_room(payload.room_code, "pause_track") as room:
            if room is not None and room.set_playing(False):
                await self._broadcast(room, "receive_pause")

    async def on_seek_track(self, connection_id: str, payload):
        async with self._locked_room(payload.room_code, "seek_track") as room:
            if room is not None and room.seek(payload.timestamp_seconds):
                await self._broadcast(room, "receive_seek", payload.timestamp_seconds)

    async def on_skip_track(self, connection_id: str, payload):
        async with self._locked_room(payload.room_code, "skip_track") as room:
            if room is not None:
                await self._advance(room)

    async def on_song_ended(self, connection_id: str, payload):
        async with self._locked_room(payload.room_code, "song_ended") as room:
            if room is None or not self._is_current(room, payload.song_id, "song_ended"):
                return
            await self._advance(room)

    async def on_song_load_error(self, connection_id: str, payload):
        async with self._locked_room(payload.room_code, "song_load_error") as room:
            if room is None or not self._is_current(room, payload.song_id, "song_load_error"):
                return
            if self._has_pending_skip(room):
                logger.debug(f"[room {room.code}] duplicate load error for {payload.song_id}, skip already scheduled")
                return

            room.consecutive_failure_count += 1
            logger.warning(f"[room {room.code}] load error for {payload.song_id} "
                           f"({room.consecutive_failure_count}/{self.max_consecutive_failures})")

            if room.consecutive_failure_count >= self.max_consecutive_failures:
                self._cancel_pending_skip(room.code)
                room.stop()
                room.consecutive_failure_count = 0
                await self._broadcast(room, "song_error", RETRIES_EXHAUSTED_MESSAGE)
                await self._broadcast(room, "stop_player")
                return

            generation = room.generation
            task = asyncio.create_task(self._deferred_skip(room.code, generation))
            self._pending_skips[room.code] = (generation, task)

    async def on_remove_from_queue(self, connection_id: str, payload):
        async with self._locked_room(payload.room_code, "remove_from_queue") as room:
            if room is None:
                return
            previous = room.current_playback
            generation = room.generation
            if not room.remove_from_queue(payload.queue_entry_id):
                logger.debug(f"[room {room.code}] remove_from_queue: {payload.queue_entry_id} not found")
                return

            if room.generation != generation:
                # the current entry was removed, which advanced playback
                self._cancel_pending_skip(room.code)
                room.consecutive_failure_count = 0

            current = room.current_playback
            if current is not None and current is not previous:
                await self._broadcast(room, "play_song", playback_payload(current))
            elif current is None:
                await self._broadcast(room, "stop_player")
            await self._broadcast(room, "queue_updated", queue_payload(room.queue))

    # ------------------------------------------------------------------
    # Queue advancement
    # ------------------------------------------------------------------

    async def _advance(self, room: Room, keep_failures: bool = False):
        """Advance playback and broadcast the outcome.

        Load-error skips pass ``keep_failures`` so consecutive failures keep
        counting; every other transition resets the counter.
        """
        self._cancel_pending_skip(room.code)
        playback = room.play_next()
        if playback is None or not keep_failures:
            room.consecutive_failure_count = 0
        await self._broadcast_transition(room, playback)

    async def _broadcast_transition(self, room: Room, playback: Optional[PlaybackState]):
        if playback is None:
            await self._broadcast(room, "stop_player")
            return
        await self._broadcast(room, "play_song", playback_payload(playback))
        await self._broadcast(room, "queue_updated", queue_payload(room.queue))

    async def _deferred_skip(self, room_code: str, generation: int):
        try:
            await asyncio.sleep(self.skip_delay)
            async with self._locked_room(room_code, "scheduled skip") as room:
                pending = self._pending_skips.get(room_code)
                if pending is not None and pending[1] is asyncio.current_task():
                    del self._pending_skips[room_code]
                if room is None or room.generation != generation:
                    logger.debug(f"[room {room_code}] scheduled skip superseded, ignoring")
                    return
                logger.info(f"[room {room_code}] skipping after load error")
                await self._advance(room, keep_failures=True)
        except asyncio.CancelledError:
            logger.debug(f"[room {room_code}] scheduled skip cancelled")
            raise
        except Exception as e:
            logger.error(f"[room {room_code}] scheduled skip failed: {e}", exc_info=True)

    def _has_pending_skip(self, room: Room) -> bool:
        pending = self._pending_skips.get(room.code)
        return pending is not None and pending[0] == room.generation and not pending[1].done()

    def _cancel_pending_skip(self, room_code: str):
        pending = self._pending_skips.pop(room_code, None)
        if pending is not None and pending[1] is not asyncio.current_task():
            pending[1].cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock(self, room_code: str) -> asyncio.Lock:
        lock = self._locks.get(room_code)
        if lock is None:
            lock = self._locks[room_code] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _locked_room(self, room_code: str, event: str) -> AsyncIterator[Optional[Room]]:
        """Hold an existing room's lock, or yield None for an unknown room.

        Only ``join_room`` may create rooms, so only it creates their locks.
        """
        if self.store.get(room_code) is None:
            logger.debug(f"Ignoring '{event}' for unknown room {room_code}")
            yield None
            return
        async with self._lock(room_code):
            # evicted while waiting for the lock
            room = self.store.get(room_code)
            if room is None:
                logger.debug(f"Ignoring '{event}' for evicted room {room_code}")
            yield room

    @staticmethod
    def _is_current(room: Room, song_id: str, event: str) -> bool:
        current = room.current_playback
        if current is not None and current.queue_entry_id == song_id:
            return True
        logger.debug(f"[room {room.code}] stale '{event}' for {song_id}, ignoring")
        return False

    async def _broadcast(self, room: Room, event: str, data: Any = None):
        await self.broadcaster.broadcast(list(room.members), event, data)
