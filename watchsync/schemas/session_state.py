"""Common enums used across schemas."""

from enum import Enum


class VideoType(str, Enum):
    MOVIE = "movie"
    SERIES = "series"
    LIVE = "live"

    def __str__(self) -> str:
        return self.value


class SyncState(str, Enum):
    """Playback sync engine states for one session attachment.

    State Transition Flow:

    IDLE → ATTACHING → WAITING_FOR_PEER → SYNCING → DETACHED
              ↓                              ↑
              └──────────────────────────────┘

    State Descriptions:
    - IDLE: No active session. Initial state of every engine.
    - ATTACHING: Subscription and initial snapshot fetch in flight. Set by attach().
    - WAITING_FOR_PEER: Host alone in a fresh session; local media forced paused.
    - SYNCING: Local events produce outbound updates, inbound notifications are reconciled.
    - DETACHED: Subscription torn down. Set by detach() from any state.

    Terminal states (no further transitions): DETACHED
    """

    IDLE = "idle"
    ATTACHING = "attaching"
    WAITING_FOR_PEER = "waiting_for_peer"
    SYNCING = "syncing"
    DETACHED = "detached"

    def __str__(self) -> str:
        return self.value


class FeedStatus(str, Enum):
    """Change feed connection status."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"

    def __str__(self) -> str:
        return self.value


__all__ = ["FeedStatus", "SyncState", "VideoType"]
