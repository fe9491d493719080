"""Feedback-loop guards for the playback sync engine.

Two time-windowed guards keep local playback events and remote sync commands from
chasing each other:

- Settle delay: while an inbound update is being applied, and for ``settle_delay``
  seconds after it finished, local media events are side effects of that update
  (``play()``, ``pause()`` and seeks fire events asynchronously). They are not
  re-emitted as outbound writes, and no further inbound update is applied, so
  corrective actions never overlap.
- Suppress-echo window: for ``echo_window`` seconds after this instance wrote to
  the store, an inbound notification carrying what was written (position within
  ``echo_tolerance``, same playing flag) is the echo of that write coming back
  through the feed and is ignored. Anything else is another participant's write
  and goes through.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum


class InboundSkipReason(str, Enum):
    APPLYING = "applying"
    SETTLING = "settling"
    ECHO = "echo"

    def __str__(self) -> str:
        return self.value


class SyncGuard:
    def __init__(
        self,
        *,
        echo_window: float,
        settle_delay: float,
        echo_tolerance: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.echo_window = echo_window
        self.settle_delay = settle_delay
        self.echo_tolerance = echo_tolerance
        self._clock = clock

        self._applying = False
        self._settle_until = 0.0
        self._last_outbound_at: float | None = None
        self._outbound_time: float | None = None
        self._outbound_playing: bool | None = None

    def begin_inbound_apply(self) -> None:
        self._applying = True

    def end_inbound_apply(self) -> None:
        self._applying = False
        self._settle_until = self._clock() + self.settle_delay

    @property
    def inbound_active(self) -> bool:
        """True while an inbound update is applying or settling."""
        return self._applying or self._clock() < self._settle_until

    def settle_remaining(self) -> float:
        return max(0.0, self._settle_until - self._clock())

    def mark_outbound(self, playback_time: float | None = None, is_playing: bool | None = None) -> None:
        self._last_outbound_at = self._clock()
        self._outbound_time = playback_time
        self._outbound_playing = is_playing

    def forget_outbound(self) -> None:
        """Drop the pending echo; a later write by someone else superseded ours."""
        self._last_outbound_at = None
        self._outbound_time = None
        self._outbound_playing = None

    @property
    def last_outbound_at(self) -> float | None:
        return self._last_outbound_at

    def within_echo_window(self) -> bool:
        if self._last_outbound_at is None:
            return False
        return self._clock() - self._last_outbound_at < self.echo_window

    def is_echo(self, playback_time: float | None = None, is_playing: bool | None = None) -> bool:
        if not self.within_echo_window():
            return False
        if playback_time is not None and self._outbound_time is not None:
            if abs(playback_time - self._outbound_time) > self.echo_tolerance:
                return False
        if is_playing is not None and self._outbound_playing is not None:
            if is_playing != self._outbound_playing:
                return False
        return True

    def inbound_skip_reason(
        self,
        *,
        ignore_echo: bool = False,
        playback_time: float | None = None,
        is_playing: bool | None = None,
    ) -> InboundSkipReason | None:
        """Why an inbound notification must be ignored right now, or None to apply it."""
        if self._applying:
            return InboundSkipReason.APPLYING
        if self._clock() < self._settle_until:
            return InboundSkipReason.SETTLING
        if not ignore_echo and self.is_echo(playback_time, is_playing):
            return InboundSkipReason.ECHO
        return None

    def reset(self) -> None:
        self._applying = False
        self._settle_until = 0.0
        self.forget_outbound()
