"""Watch-together chat message schema."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from watchsync.shared.utils import utc_now


class ChatMessage(BaseModel):
    id: str
    session_id: str
    device_id: str
    username: str | None = None
    message: str
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(extra="ignore")
