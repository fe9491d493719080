from pydantic import BaseModel

from watchsync.shared.config import config


def _float(key: str, default: float) -> float:
    return float((config.get(key) or "").strip() or default)


def _int(key: str, default: int) -> int:
    return int((config.get(key) or "").strip() or default)


class AppEnvironConfig(BaseModel):
    # Redis label used by the session store, change feed and chat
    REDIS_LABEL: str = (config.get("WATCH_REDIS_LABEL") or "").strip() or "default"

    # Session lifecycle
    WATCH_SESSION_TTL_SECONDS: int = _int("WATCH_SESSION_TTL_SECONDS", 24 * 60 * 60)
    WATCH_CODE_MAX_ATTEMPTS: int = _int("WATCH_CODE_MAX_ATTEMPTS", 5)

    # Playback sync engine
    SYNC_DEBOUNCE_SECONDS: float = _float("SYNC_DEBOUNCE_SECONDS", 0.5)
    SYNC_ECHO_WINDOW_SECONDS: float = _float("SYNC_ECHO_WINDOW_SECONDS", 1.0)
    SYNC_SETTLE_DELAY_SECONDS: float = _float("SYNC_SETTLE_DELAY_SECONDS", 0.5)
    SYNC_DRIFT_TOLERANCE_SECONDS: float = _float("SYNC_DRIFT_TOLERANCE_SECONDS", 2.0)
    # Host heartbeat while playing; 0 disables it
    SYNC_TICK_INTERVAL_SECONDS: float = _float("SYNC_TICK_INTERVAL_SECONDS", 5.0)
    SYNC_MAX_CONSECUTIVE_CORRECTIONS: int = _int("SYNC_MAX_CONSECUTIVE_CORRECTIONS", 5)

    # Change feed reconnection
    FEED_MAX_ATTEMPTS: int = _int("FEED_MAX_ATTEMPTS", 8)
    FEED_BASE_DELAY_SECONDS: float = _float("FEED_BASE_DELAY_SECONDS", 1.0)
    FEED_MAX_DELAY_SECONDS: float = _float("FEED_MAX_DELAY_SECONDS", 30.0)

    # Chat
    CHAT_HISTORY_LIMIT: int = _int("CHAT_HISTORY_LIMIT", 100)
    CHAT_MAX_MESSAGE_LENGTH: int = _int("CHAT_MAX_MESSAGE_LENGTH", 500)

    # Housekeeping
    SWEEP_INTERVAL_SECONDS: float = _float("SWEEP_INTERVAL_SECONDS", 15 * 60)


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
