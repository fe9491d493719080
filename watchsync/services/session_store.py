"""Redis-backed session store client.

Every write is an unconditional last-writer-wins SET; nothing here does
compare-and-swap. After an update the post-update record is published on the
session's channel, which is what the change feed delivers to participants.
"""

from __future__ import annotations

import math
from datetime import datetime

from loguru import logger
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from watchsync.app_config import get_app_environ_config
from watchsync.domain.utils.idgen import canonicalize_session_code, is_valid_session_code
from watchsync.schemas import PlaybackUpdate, WatchSession
from watchsync.shared.storage.redis import get_redis_client
from watchsync.shared.utils import utc_now
from watchsync.utils.app_errors import SessionCodeTaken, StoreUnavailable

from .redis_keys import (
    WATCH_CHAT_KEY,
    WATCH_CODE_KEY,
    WATCH_SESSION_INDEX_KEY,
    WATCH_SESSION_KEY,
    session_channel,
)


def _decode(value: bytes | str | None) -> str | None:
    if isinstance(value, bytes):
        return value.decode()
    return value


class SessionStoreClient:
    """CRUD operations against persisted watch session records."""

    def __init__(self, redis_client: Redis | None = None, *, ttl_seconds: int | None = None):
        self._redis = redis_client
        if ttl_seconds is None:
            ttl_seconds = get_app_environ_config().WATCH_SESSION_TTL_SECONDS
        self._ttl_seconds = ttl_seconds

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_client(get_app_environ_config().REDIS_LABEL)
        return self._redis

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def _remaining_ttl(self, record: WatchSession, now: datetime | None = None) -> int:
        now = now or utc_now()
        if record.expires_at is None:
            return self._ttl_seconds
        return max(1, math.ceil((record.expires_at - now).total_seconds()))

    async def create(self, record: WatchSession) -> str:
        """
        Persist a new session record.

        Args:
            record: Fully populated session record

        Returns:
            The session id

        Raises:
            SessionCodeTaken: If another live session already owns the code
            StoreUnavailable: If Redis rejects the write
        """
        ttl = self._remaining_ttl(record)
        code_key = WATCH_CODE_KEY.format(code=record.code)
        try:
            claimed = await self.redis.set(code_key, record.id, nx=True, ex=ttl)
        except RedisError as e:
            raise StoreUnavailable(errmesg=f"Failed to create session {record.id}: {e}") from e
        if not claimed:
            raise SessionCodeTaken(errmesg=f"Session code already in use: {record.code}")

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(WATCH_SESSION_KEY.format(session_id=record.id), record.model_dump_json(), ex=ttl)
                pipe.zadd(WATCH_SESSION_INDEX_KEY, {record.id: record.created_at.timestamp()})
                await pipe.execute()
        except RedisError as e:
            await self._release_code(code_key, record.id)
            raise StoreUnavailable(errmesg=f"Failed to create session {record.id}: {e}") from e

        logger.info("Created watch session {} with code {} (ttl={}s)", record.id, record.code, ttl)
        return record.id

    async def _release_code(self, code_key: str, session_id: str) -> None:
        """Best-effort release of a code claimed for a session that was never written."""
        try:
            await self.redis.delete(code_key)
        except RedisError as e:
            logger.warning("Failed to release code key {} of session {}: {}", code_key, session_id, e)

    async def get_by_id(self, session_id: str) -> WatchSession | None:
        """
        Retrieve a live session by id.

        Returns:
            The session, or None if missing, expired or undecodable

        Raises:
            StoreUnavailable: If Redis cannot be read
        """
        try:
            raw = await self.redis.get(WATCH_SESSION_KEY.format(session_id=session_id))
        except RedisError as e:
            raise StoreUnavailable(errmesg=f"Failed to read session {session_id}: {e}") from e

        if raw is None:
            logger.debug("Watch session {} not found", session_id)
            return None

        try:
            session = WatchSession.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Discarding malformed watch session {}: {}", session_id, e)
            return None

        if session.is_expired():
            logger.debug("Watch session {} has expired", session_id)
            return None
        return session

    async def get_by_code(self, code: str) -> WatchSession | None:
        """Retrieve a live session by its share code (case-insensitive)."""
        code = canonicalize_session_code(code)
        if not is_valid_session_code(code):
            return None

        try:
            session_id = _decode(await self.redis.get(WATCH_CODE_KEY.format(code=code)))
        except RedisError as e:
            raise StoreUnavailable(errmesg=f"Failed to resolve session code {code}: {e}") from e

        if not session_id:
            logger.debug("No watch session for code {}", code)
            return None
        return await self.get_by_id(session_id)

    async def update(self, session_id: str, update: PlaybackUpdate) -> WatchSession | None:
        """
        Write the update over the stored record and publish the result.

        Read-modify-write: concurrent writers race and the last one wins.

        Returns:
            The post-update record, or None if the session no longer exists
        """
        current = await self.get_by_id(session_id)
        if current is None:
            return None

        updated = current.apply(update)
        payload = updated.model_dump_json()
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(WATCH_SESSION_KEY.format(session_id=session_id), payload, keepttl=True)
                pipe.publish(session_channel(session_id), payload)
                await pipe.execute()
        except RedisError as e:
            raise StoreUnavailable(errmesg=f"Failed to update session {session_id}: {e}") from e

        logger.debug(
            "Updated watch session {}: {}",
            session_id,
            update.model_dump(exclude_none=True),
        )
        return updated

    async def delete(self, session_id: str) -> bool:
        """Delete a session, its code mapping and its chat history."""
        session_key = WATCH_SESSION_KEY.format(session_id=session_id)
        try:
            raw = await self.redis.get(session_key)
            code = None
            if raw is not None:
                try:
                    code = WatchSession.model_validate_json(raw).code
                except ValidationError:
                    logger.warning("Deleting malformed watch session {}", session_id)

            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(session_key)
                if code:
                    pipe.delete(WATCH_CODE_KEY.format(code=code))
                pipe.delete(WATCH_CHAT_KEY.format(session_id=session_id))
                pipe.zrem(WATCH_SESSION_INDEX_KEY, session_id)
                await pipe.execute()
        except RedisError as e:
            raise StoreUnavailable(errmesg=f"Failed to delete session {session_id}: {e}") from e

        logger.info("Deleted watch session {}", session_id)
        return raw is not None

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """
        Delete every session created more than the TTL ago.

        Returns:
            Number of sessions removed
        """
        now = now or utc_now()
        cutoff = now.timestamp() - self._ttl_seconds
        try:
            expired = await self.redis.zrangebyscore(WATCH_SESSION_INDEX_KEY, "-inf", cutoff)
        except RedisError as e:
            raise StoreUnavailable(errmesg=f"Failed to scan expired sessions: {e}") from e

        for session_id in expired:
            await self.delete(_decode(session_id))

        if expired:
            logger.info("Swept {} expired watch sessions", len(expired))
        return len(expired)


__all__ = ["SessionStoreClient"]
