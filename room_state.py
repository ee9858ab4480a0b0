"""Per-room state: membership, queue and the anchor-based playback clock.

Nothing in this module does I/O. Timestamps are epoch milliseconds taken from
an injected clock so the playback clock can be driven deterministically.

Elapsed playback time is never stored. It is derived on demand from
``started_at_anchor`` (and ``paused_at_anchor`` while paused); pause, resume
and seek only move the anchors.
"""
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)

UNKNOWN_TITLE = "Unknown Title"

Clock = Callable[[], float]


def now_ms() -> float:
    return time.time() * 1000


@dataclass
class Member:
    connection_id: str
    display_name: str


@dataclass
class QueueEntry:
    source_ref: str
    title: str
    thumbnail: Optional[str]
    queue_entry_id: str
    requested_by: Optional[str] = None


@dataclass
class PlaybackState:
    queue_entry_id: str
    source_ref: str
    title: str
    started_at_anchor: Optional[float]
    paused_at_anchor: Optional[float] = None
    is_playing: bool = True
    thumbnail: Optional[str] = None
    requested_by: Optional[str] = None

    def elapsed_ms(self, now: float) -> float:
        if self.started_at_anchor is None:
            return 0.0
        if self.paused_at_anchor is not None:
            return max(0.0, self.paused_at_anchor - self.started_at_anchor)
        return max(0.0, now - self.started_at_anchor)


@dataclass
class SyncSnapshot:
    room_code: str
    members: List[Member]
    queue: List[QueueEntry]
    current_playback: Optional[PlaybackState]
    is_playing: bool
    elapsed_seconds: float


def mint_queue_entry_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Room:
    code: str
    clock: Clock = field(default=now_ms, repr=False)
    members: Dict[str, Member] = field(default_factory=dict)
    queue: List[QueueEntry] = field(default_factory=list)
    current_playback: Optional[PlaybackState] = None
    consecutive_failure_count: int = 0
    # Bumped on every advance or stop; deferred actions compare against it
    generation: int = 0
    created_at: float = 0.0
    last_activity_at: float = 0.0
    empty_since: Optional[float] = None

    def __post_init__(self):
        now = self.clock()
        self.created_at = now
        self.last_activity_at = now
        if not self.members:
            self.empty_since = now

    def _log(self, action: str, **details):
        logger.info(f"[room {self.code}] {action} {details}" if details else f"[room {self.code}] {action}")

    def _touch(self):
        self.last_activity_at = self.clock()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def join(self, member: Member) -> Member:
        """Add ``member``, replacing any member with the same connection id."""
        self.members[member.connection_id] = member
        self.empty_since = None
        self._touch()
        self._log("USER_JOINED", connection_id=member.connection_id,
                  name=member.display_name, total=len(self.members))
        return member

    def leave(self, connection_id: str) -> Optional[Member]:
        member = self.members.pop(connection_id, None)
        if member is None:
            return None
        if not self.members:
            self.empty_since = self.clock()
        self._log("USER_LEFT", connection_id=connection_id,
                  name=member.display_name, remaining=len(self.members))
        return member

    def has_member(self, connection_id: str) -> bool:
        return connection_id in self.members

    @property
    def is_empty(self) -> bool:
        return not self.members

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, source_ref: str, title: Optional[str], thumbnail: Optional[str] = None,
                requested_by: Optional[str] = None) -> QueueEntry:
        title = title or UNKNOWN_TITLE
        entry = QueueEntry(
            source_ref=source_ref,
            title=title,
            thumbnail=thumbnail,
            queue_entry_id=mint_queue_entry_id(),
            requested_by=requested_by,
        )
        self.queue.append(entry)
        self._touch()
        self._log("QUEUE_ADD", title=title, queue_entry_id=entry.queue_entry_id,
                  queue_length=len(self.queue))
        return entry

    def remove_from_queue(self, queue_entry_id: str) -> bool:
        """Remove an entry by id. Returns False when nothing matched.

        Removing the entry that is currently playing is a skip: playback
        advances to the next queued entry (or stops) through ``play_next``.
        """
        if self.current_playback and self.current_playback.queue_entry_id == queue_entry_id:
            self._log("REMOVE_CURRENT", title=self.current_playback.title,
                      queue_entry_id=queue_entry_id)
            self.play_next()
            return True

        for index, entry in enumerate(self.queue):
            if entry.queue_entry_id == queue_entry_id:
                del self.queue[index]
                self._touch()
                self._log("QUEUE_REMOVE", title=entry.title, queue_entry_id=queue_entry_id,
                          queue_length=len(self.queue))
                return True
        return False

    def play_next(self) -> Optional[PlaybackState]:
        """Promote the queue head to current playback, or stop if the queue is empty.

        Every kind of advancement (skip, natural end, load error, removing
        the current entry) goes through here.
        """
        self.generation += 1
        self._touch()
        if not self.queue:
            self.current_playback = None
            self._log("PLAYBACK_STOPPED", reason="queue empty")
            return None

        entry = self.queue.pop(0)
        self.current_playback = PlaybackState(
            queue_entry_id=entry.queue_entry_id,
            source_ref=entry.source_ref,
            title=entry.title,
            thumbnail=entry.thumbnail,
            requested_by=entry.requested_by,
            started_at_anchor=self.clock(),
            paused_at_anchor=None,
            is_playing=True,
        )
        self._log("PLAY_NEXT", title=entry.title, queue_entry_id=entry.queue_entry_id)
        return self.current_playback

    def stop(self):
        """Drop current playback without touching the queue."""
        self.generation += 1
        self.current_playback = None
        self._touch()
        self._log("PLAYBACK_STOPPED", reason="aborted")

    # ------------------------------------------------------------------
    # Playback clock
    # ------------------------------------------------------------------

    def set_playing(self, playing: bool) -> bool:
        playback = self.current_playback
        if playback is None:
            return False
        now = self.clock()
        if playing:
            if playback.paused_at_anchor is not None:
                playback.started_at_anchor += now - playback.paused_at_anchor
                playback.paused_at_anchor = None
            elif playback.started_at_anchor is None:
                playback.started_at_anchor = now
            playback.is_playing = True
            self._log("RESUME")
        else:
            if playback.paused_at_anchor is None:
                playback.paused_at_anchor = now
            playback.is_playing = False
            self._log("PAUSE")
        self._touch()
        return True

    def seek(self, target_seconds: float) -> bool:
        playback = self.current_playback
        if playback is None:
            return False
        now = self.clock()
        playback.started_at_anchor = now - target_seconds * 1000
        if playback.paused_at_anchor is not None:
            # keep the frozen position equal to the target while paused
            playback.paused_at_anchor = now
        self._touch()
        self._log("SEEK", position=target_seconds)
        return True

    @property
    def is_playing(self) -> bool:
        return self.current_playback is not None and self.current_playback.is_playing

    @property
    def is_idle(self) -> bool:
        return self.current_playback is None and not self.is_playing

    @property
    def elapsed_seconds(self) -> float:
        if self.current_playback is None:
            return 0.0
        return self.current_playback.elapsed_ms(self.clock()) / 1000

    def compute_sync_snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            room_code=self.code,
            members=list(self.members.values()),
            queue=list(self.queue),
            current_playback=self.current_playback,
            is_playing=self.is_playing,
            elapsed_seconds=self.elapsed_seconds,
        )
