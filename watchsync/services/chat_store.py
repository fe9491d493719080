"""Redis-backed watch-together chat history."""

from __future__ import annotations

from loguru import logger
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from watchsync.app_config import get_app_environ_config
from watchsync.schemas import ChatMessage
from watchsync.shared.storage.redis import get_redis_client
from watchsync.utils.app_errors import StoreUnavailable

from .redis_keys import WATCH_CHAT_KEY, chat_channel


class ChatStore:
    """Capped per-session message log plus a pub/sub channel for new messages."""

    def __init__(
        self,
        redis_client: Redis | None = None,
        *,
        history_limit: int | None = None,
        ttl_seconds: int | None = None,
    ):
        cfg = get_app_environ_config()
        self._redis = redis_client
        self._history_limit = cfg.CHAT_HISTORY_LIMIT if history_limit is None else history_limit
        self._ttl_seconds = cfg.WATCH_SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_client(get_app_environ_config().REDIS_LABEL)
        return self._redis

    async def post(self, message: ChatMessage) -> ChatMessage:
        key = WATCH_CHAT_KEY.format(session_id=message.session_id)
        payload = message.model_dump_json()
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.rpush(key, payload)
                pipe.ltrim(key, -self._history_limit, -1)
                pipe.expire(key, self._ttl_seconds)
                pipe.publish(chat_channel(message.session_id), payload)
                await pipe.execute()
        except RedisError as e:
            raise StoreUnavailable(errmesg=f"Failed to post chat message: {e}") from e

        logger.debug("Posted chat message {} to session {}", message.id, message.session_id)
        return message

    async def recent(self, session_id: str, limit: int | None = None) -> list[ChatMessage]:
        """Return up to ``limit`` most recent messages, oldest first."""
        limit = min(limit or self._history_limit, self._history_limit)
        try:
            raw_messages = await self.redis.lrange(WATCH_CHAT_KEY.format(session_id=session_id), -limit, -1)
        except RedisError as e:
            raise StoreUnavailable(errmesg=f"Failed to load chat for {session_id}: {e}") from e

        messages: list[ChatMessage] = []
        for raw in raw_messages:
            try:
                messages.append(ChatMessage.model_validate_json(raw))
            except ValidationError as e:
                logger.warning("Skipping malformed chat message in {}: {}", session_id, e)
        return messages


__all__ = ["ChatStore"]
