from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterator, Optional

import discord

from .audio_source import DEFAULT_VOLUME, PlayableItem, QualitySnapshot
from .errors import InvalidVolume

if TYPE_CHECKING:
    from .player import GuildPlayer

log = logging.getLogger(__name__)

MIN_VOLUME = 0.01
MAX_VOLUME = 1.0


def volume_from_percent(level: int) -> float:
    """Convert a user-supplied 1-100 level to a fraction. Out-of-range levels are rejected."""
    if not 1 <= level <= 100:
        raise InvalidVolume(f"volume {level} outside 1-100")
    return level / 100


class GuildQueue:
    """Per-guild playback state. Index 0 of ``items`` is playing or about to play."""

    def __init__(self, volume: float = DEFAULT_VOLUME) -> None:
        self.items: list[PlayableItem] = []
        self.volume: float = volume
        self.is_playing: bool = False
        self.voice_client: Optional[discord.VoiceClient] = None
        self.source: Optional[discord.AudioSource] = None
        self.quality: QualitySnapshot | None = None

    def __len__(self) -> int:
        return len(self.items)

    @property
    def volume_percent(self) -> int:
        return round(self.volume * 100)

    def enqueue(self, item: PlayableItem) -> int:
        """Append a track and return its position (1-indexed)."""
        self.items.append(item)
        return len(self.items)

    def peek_head(self) -> PlayableItem | None:
        return self.items[0] if self.items else None

    def advance(self) -> PlayableItem | None:
        """Drop index 0 and return it, or None if the queue was empty."""
        if not self.items:
            return None
        return self.items.pop(0)

    def replace_head(self, item: PlayableItem) -> None:
        """Swap a working alternative into the slot of the item that failed."""
        if not self.items:
            raise IndexError("replace_head on an empty queue")
        self.items[0] = item

    def clear(self) -> None:
        self.items.clear()
        self.is_playing = False
        self.quality = None

    def set_volume(self, fraction: float) -> bool:
        """Store the volume and apply it to the live stream if it supports gain.

        Returns True when the change was heard immediately, False when it
        will only take effect on the next track.
        """
        self.volume = max(MIN_VOLUME, min(MAX_VOLUME, fraction))
        if self.source is not None and hasattr(self.source, "volume"):
            self.source.volume = self.volume
            return True
        return False


class QueueManager:
    """Holds the live per-guild players.

    Owned by the music cog; nothing else keeps a reference to guild state.
    """

    def __init__(self) -> None:
        self._players: dict[int, GuildPlayer] = {}

    def get(self, guild_id: int) -> GuildPlayer | None:
        return self._players.get(guild_id)

    def get_or_create(self, guild_id: int, factory: Callable[[], GuildPlayer]) -> GuildPlayer:
        player = self._players.get(guild_id)
        if player is None or player.closed:
            player = factory()
            self._players[guild_id] = player
            log.debug("Created player for guild %s", guild_id)
        return player

    def remove(self, guild_id: int, player: GuildPlayer | None = None) -> None:
        """Drop a guild's entry. With ``player`` given, only if it is still the registered one."""
        if player is not None and self._players.get(guild_id) is not player:
            return
        self._players.pop(guild_id, None)

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._players

    def __len__(self) -> int:
        return len(self._players)

    def __iter__(self) -> Iterator[GuildPlayer]:
        return iter(list(self._players.values()))
