"""Watch-together domain: session lifecycle, playback sync and chat."""

from .chat_domain import WatchChatService
from .media import LocalPlaybackState, MediaElement
from .session_domain import WatchSessionService
from .session_models import SessionCreated, SessionCreateParams, SyncSettings
from .sync_engine import PlaybackSyncEngine
from .sync_guard import InboundSkipReason, SyncGuard
from .sync_state_machine import SyncStateMachine

__all__ = [
    "InboundSkipReason",
    "LocalPlaybackState",
    "MediaElement",
    "PlaybackSyncEngine",
    "SessionCreateParams",
    "SessionCreated",
    "SyncGuard",
    "SyncSettings",
    "SyncStateMachine",
    "WatchChatService",
    "WatchSessionService",
]
