"""
Media player seam for the rotation controller.

The vendor SDK (MusicKit instance, Spotify Web Playback player, YouTube IFrame
player) sits behind `MediaPlayer`. The controller only needs to read playback
state, subscribe to two events, and replay a `PlaybackSnapshot` onto a fresh
instance after a token swap.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, FrozenSet, Protocol, Sequence, Tuple, Union

from tunebridge.client.events import Handler, Unsubscribe
from tunebridge.models.token import Token


class PlaybackState(str, Enum):
    NONE = "none"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    ENDED = "ended"
    SEEKING = "seeking"
    WAITING = "waiting"
    STALLED = "stalled"
    COMPLETED = "completed"

    @classmethod
    def coerce(cls, value: Union["PlaybackState", str]) -> "PlaybackState":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NONE


# States in which tearing the player down would cut audio off
ACTIVE_STATES: FrozenSet[PlaybackState] = frozenset(
    {
        PlaybackState.LOADING,
        PlaybackState.PLAYING,
        PlaybackState.SEEKING,
        PlaybackState.WAITING,
        PlaybackState.STALLED,
    }
)

# Only these queue items can be put back with set_queue
TRACK_ITEM_TYPES: FrozenSet[str] = frozenset({"song", "songs", "track", "tracks"})


@dataclass(frozen=True)
class QueueItem:
    id: str
    type: str = "song"


class MediaPlayer(Protocol):
    @property
    def playback_state(self) -> PlaybackState: ...

    @property
    def is_authorized(self) -> bool: ...

    @property
    def volume(self) -> float: ...

    @property
    def queue(self) -> Sequence[QueueItem]: ...

    @property
    def queue_position(self) -> int: ...

    @property
    def current_playback_time(self) -> float: ...

    def subscribe(self, event: str, handler: Handler) -> Unsubscribe: ...

    async def set_volume(self, volume: float) -> None: ...

    async def set_queue(self, item_ids: Sequence[str]) -> None: ...

    async def change_to_index(self, index: int) -> None: ...

    async def seek_to_time(self, seconds: float) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def stop(self) -> None: ...


# Builds a configured player from a token (MusicKit.configure + getInstance, etc.)
PlayerFactory = Callable[[Token], Awaitable[MediaPlayer]]


@dataclass(frozen=True)
class PlaybackSnapshot:
    volume: float
    queue_item_ids: Tuple[str, ...]
    queue_position: int
    current_time_seconds: float

    @property
    def has_queue(self) -> bool:
        return bool(self.queue_item_ids)


def capture_snapshot(player: MediaPlayer) -> PlaybackSnapshot:
    return PlaybackSnapshot(
        volume=player.volume,
        queue_item_ids=tuple(item.id for item in player.queue if item.type.lower() in TRACK_ITEM_TYPES),
        queue_position=max(0, player.queue_position),
        current_time_seconds=max(0.0, player.current_playback_time),
    )
