"""Watch session domain models."""

from pydantic import BaseModel, Field

from watchsync.app_config import get_app_environ_config
from watchsync.schemas import VideoType


class SessionCreateParams(BaseModel):
    """Parameters for creating a watch session."""

    video_type: VideoType
    video_identifier: str = Field(min_length=1)
    stream_url: str = Field(min_length=1)
    title: str = "Untitled"
    host_id: str | None = None


class SessionCreated(BaseModel):
    """Result of creating a watch session."""

    session_id: str
    code: str
    host_id: str


class SyncSettings(BaseModel):
    """Timing knobs of the playback sync engine, in seconds."""

    debounce_seconds: float = Field(default=0.5, ge=0)
    echo_window_seconds: float = Field(default=1.0, ge=0)
    settle_delay_seconds: float = Field(default=0.5, ge=0)
    drift_tolerance_seconds: float = Field(default=2.0, gt=0)
    tick_interval_seconds: float = Field(default=5.0, ge=0)
    max_consecutive_corrections: int = Field(default=5, ge=1)

    @classmethod
    def from_config(cls) -> "SyncSettings":
        cfg = get_app_environ_config()
        return cls(
            debounce_seconds=cfg.SYNC_DEBOUNCE_SECONDS,
            echo_window_seconds=cfg.SYNC_ECHO_WINDOW_SECONDS,
            settle_delay_seconds=cfg.SYNC_SETTLE_DELAY_SECONDS,
            drift_tolerance_seconds=cfg.SYNC_DRIFT_TOLERANCE_SECONDS,
            tick_interval_seconds=cfg.SYNC_TICK_INTERVAL_SECONDS,
            max_consecutive_corrections=cfg.SYNC_MAX_CONSECUTIVE_CORRECTIONS,
        )
