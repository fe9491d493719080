"""Local media element contract consumed by the playback sync engine."""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class MediaElement(Protocol):
    """The participant's player, as seen by the sync engine.

    ``play()`` may return an awaitable (players that report autoplay refusal
    asynchronously). ``play()``, ``pause()`` and ``seek()`` are expected to fire
    the player's own events back into the engine, which the engine suppresses
    while it is applying an inbound update.
    """

    @property
    def current_time(self) -> float: ...

    @property
    def paused(self) -> bool: ...

    def play(self) -> Awaitable[None] | None: ...

    def pause(self) -> None: ...

    def seek(self, seconds: float) -> None: ...


@dataclass(frozen=True)
class LocalPlaybackState:
    """Snapshot of one participant's actual player state. Never persisted."""

    current_time: float
    paused: bool
    buffering: bool = False

    @property
    def is_playing(self) -> bool:
        return not self.paused
