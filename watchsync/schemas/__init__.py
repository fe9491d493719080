"""Pydantic schemas shared across the store, the change feed and the domain."""

from .chat import ChatMessage
from .session_state import FeedStatus, SyncState, VideoType
from .watch_session import DEFAULT_SESSION_TTL, PlaybackUpdate, WatchSession

__all__ = [
    "ChatMessage",
    "DEFAULT_SESSION_TTL",
    "FeedStatus",
    "PlaybackUpdate",
    "SyncState",
    "VideoType",
    "WatchSession",
]
