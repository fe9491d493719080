"""Watch session record schema.

This is the one canonical shape of a shared session. Records coming back from the
store or the change feed are validated into it at the client boundary and are never
passed around as loose dicts.
"""

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, field_validator

from watchsync.domain.utils.idgen import canonicalize_session_code, is_valid_session_code
from watchsync.shared.utils import utc_now

from .session_state import VideoType

DEFAULT_SESSION_TTL = timedelta(hours=24)


class WatchSession(BaseModel):
    """Shared playback record all participants converge toward."""

    id: str
    code: str

    # Content reference, immutable after creation
    video_type: VideoType
    video_identifier: str
    stream_url: str
    title: str = "Untitled"

    # Shared playback state, last writer wins
    playback_time: float = Field(default=0.0, ge=0)
    is_playing: bool = False
    participants: int = Field(default=1, ge=0)

    host_id: str | None = None

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("code", mode="before")
    @classmethod
    def _canonical_code(cls, v: str) -> str:
        if not isinstance(v, str):
            raise ValueError("session code must be a string")
        code = canonicalize_session_code(v)
        if not is_valid_session_code(code):
            raise ValueError(f"invalid session code: {v!r}")
        return code

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or utc_now()
        expires_at = self.expires_at or (self.created_at + DEFAULT_SESSION_TTL)
        return now >= expires_at

    def apply(self, update: "PlaybackUpdate") -> "WatchSession":
        """Return a copy with the update's fields written over this record."""
        changes = update.model_dump(exclude_none=True)
        changes["updated_at"] = utc_now()
        return self.model_copy(update=changes)


class PlaybackUpdate(BaseModel):
    """Partial update of the mutable session fields."""

    playback_time: float | None = Field(default=None, ge=0)
    is_playing: bool | None = None
    participants: int | None = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid")


__all__ = ["DEFAULT_SESSION_TTL", "PlaybackUpdate", "WatchSession"]
