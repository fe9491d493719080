"""Watch session lifecycle: create, join, restart, leave and expiry."""

from datetime import timedelta

from loguru import logger

from watchsync.app_config import get_app_environ_config
from watchsync.domain.utils.idgen import (
    canonicalize_session_code,
    is_valid_session_code,
    new_participant_id,
    new_session_code,
    new_session_id,
)
from watchsync.schemas import PlaybackUpdate, WatchSession
from watchsync.services.session_store import SessionStoreClient
from watchsync.shared.utils import utc_now
from watchsync.utils.app_errors import SessionCodeTaken, StoreUnavailable

from .session_models import SessionCreateParams, SessionCreated


class WatchSessionService:
    """Lifecycle operations on shared watch sessions.

    Only ``create_session`` raises on store failure. Every other operation
    reports failure as ``None`` or ``False`` so callers on the playback path
    never see an exception.
    """

    def __init__(self, store: SessionStoreClient | None = None, *, code_max_attempts: int | None = None):
        self._store = store or SessionStoreClient()
        if code_max_attempts is None:
            code_max_attempts = get_app_environ_config().WATCH_CODE_MAX_ATTEMPTS
        self._code_max_attempts = code_max_attempts

    @property
    def store(self) -> SessionStoreClient:
        return self._store

    async def create_session(self, params: SessionCreateParams) -> SessionCreated:
        """
        Create a new session paused at 0 with the creator as sole participant.

        Args:
            params: Content reference and optional host participant id

        Returns:
            SessionCreated with the session id, the share code and the host id

        Raises:
            StoreUnavailable: If the record cannot be written or no free code was found
        """
        host_id = params.host_id or new_participant_id()
        now = utc_now()

        for attempt in range(1, self._code_max_attempts + 1):
            record = WatchSession(
                id=new_session_id(),
                code=new_session_code(),
                video_type=params.video_type,
                video_identifier=params.video_identifier,
                stream_url=params.stream_url,
                title=params.title or "Untitled",
                playback_time=0.0,
                is_playing=False,
                participants=1,
                host_id=host_id,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(seconds=self._store.ttl_seconds),
            )
            try:
                session_id = await self._store.create(record)
            except SessionCodeTaken:
                logger.warning(
                    "Session code {} collided (attempt {}/{})",
                    record.code,
                    attempt,
                    self._code_max_attempts,
                )
                continue

            logger.info(
                "Watch session {} created for {} {} by {}",
                session_id,
                params.video_type,
                params.video_identifier,
                host_id,
            )
            return SessionCreated(session_id=session_id, code=record.code, host_id=host_id)

        raise StoreUnavailable(errmesg=f"No free session code after {self._code_max_attempts} attempts")

    async def join_session(self, code: str) -> WatchSession | None:
        """
        Join a session by share code. Case-insensitive.

        Returns:
            The post-join session, or None when the code is malformed, unknown,
            expired, or the store cannot be reached
        """
        code = canonicalize_session_code(code or "")
        if not is_valid_session_code(code):
            logger.debug("Rejected malformed session code {!r}", code)
            return None

        try:
            session = await self._store.get_by_code(code)
            if session is None:
                logger.info("No live watch session for code {}", code)
                return None

            # Read-then-write; concurrent joins may under-count
            joined = await self._store.update(
                session.id,
                PlaybackUpdate(participants=session.participants + 1),
            )
        except StoreUnavailable as e:
            logger.warning("Join with code {} failed: {}", code, e.errmesg)
            return None

        if joined is not None:
            logger.info("Joined watch session {} ({} participants)", joined.id, joined.participants)
        return joined

    async def get_session(self, session_id: str) -> WatchSession | None:
        try:
            return await self._store.get_by_id(session_id)
        except StoreUnavailable as e:
            logger.warning("Lookup of session {} failed: {}", session_id, e.errmesg)
            return None

    async def restart_for_everyone(self, session_id: str, requester_id: str | None = None) -> bool:
        """
        Rewind the shared session to 0 and start playing.

        When ``requester_id`` is given and the session records a host, only the
        host may restart.
        This writes the store only; a participant with an attached engine uses
        ``PlaybackSyncEngine.restart_for_everyone`` so its own player follows.
        """
        try:
            if requester_id is not None:
                session = await self._store.get_by_id(session_id)
                if session is None:
                    return False
                if session.host_id and session.host_id != requester_id:
                    logger.warning(
                        "Participant {} is not the host of {}, restart refused",
                        requester_id,
                        session_id,
                    )
                    return False

            updated = await self._store.update(
                session_id,
                PlaybackUpdate(playback_time=0.0, is_playing=True),
            )
        except StoreUnavailable as e:
            logger.warning("Restart of session {} failed: {}", session_id, e.errmesg)
            return False

        if updated is None:
            return False
        logger.info("Watch session {} restarted for everyone", session_id)
        return True

    async def leave_session(self, session_id: str) -> bool:
        """Drop one participant; the session is deleted when nobody is left."""
        try:
            session = await self._store.get_by_id(session_id)
            if session is None:
                return False

            remaining = session.participants - 1
            if remaining <= 0:
                await self._store.delete(session_id)
                logger.info("Last participant left, watch session {} deleted", session_id)
                return True

            updated = await self._store.update(session_id, PlaybackUpdate(participants=remaining))
        except StoreUnavailable as e:
            logger.warning("Leave of session {} failed: {}", session_id, e.errmesg)
            return False

        return updated is not None

    async def sweep_expired_sessions(self) -> int:
        """Delete sessions older than the TTL, whoever is still in them."""
        try:
            return await self._store.sweep_expired()
        except StoreUnavailable as e:
            logger.warning("Session sweep failed: {}", e.errmesg)
            return 0


__all__ = ["WatchSessionService"]
