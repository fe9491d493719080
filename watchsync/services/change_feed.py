"""Change feed subscriber over Redis pub/sub.

One subscriber delivers the records published on a single channel (one session's
post-update records, or one session's chat messages). Delivery is at-least-once and
not strictly ordered; consumers must be idempotent.

The connection is modelled as a small state machine surfaced through ``status``:

    DISCONNECTED → CONNECTING → CONNECTED ⇄ RECONNECTING → DISCONNECTED

A dropped connection is retried with bounded exponential backoff. After
``max_attempts`` consecutive failures the subscriber gives up and stays
DISCONNECTED; local playback keeps running unsynced.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis

from watchsync.app_config import get_app_environ_config
from watchsync.schemas import FeedStatus, WatchSession
from watchsync.shared.storage.redis import get_redis_client
from watchsync.shared.utils import format_error
from watchsync.utils.app_errors import FeedDisconnected

from .redis_keys import session_channel

UpdateCallback = Callable[[Any], Awaitable[None] | None]
ErrorCallback = Callable[[FeedDisconnected], Awaitable[None] | None]
StatusListener = Callable[[FeedStatus], None]


async def _invoke(callback: Callable[[Any], Any], arg: Any) -> None:
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


class ChangeFeedSubscriber:
    """Filtered push channel keyed by session id."""

    def __init__(
        self,
        redis_client: Redis | None = None,
        *,
        model: type[BaseModel] = WatchSession,
        channel_for: Callable[[str], str] = session_channel,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        connect_timeout: float = 5.0,
    ) -> None:
        cfg = get_app_environ_config()
        self._redis = redis_client
        self._model = model
        self._channel_for = channel_for
        self._max_attempts = cfg.FEED_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self._base_delay = cfg.FEED_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self._max_delay = cfg.FEED_MAX_DELAY_SECONDS if max_delay is None else max_delay
        self._connect_timeout = connect_timeout

        self._status = FeedStatus.DISCONNECTED
        self._status_listeners: list[StatusListener] = []
        self._session_id: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closed = True

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_client(get_app_environ_config().REDIS_LABEL)
        return self._redis

    @property
    def status(self) -> FeedStatus:
        return self._status

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; returns a callable that removes it."""
        self._status_listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._status_listeners.remove(listener)

        return _remove

    def _set_status(self, status: FeedStatus) -> None:
        if status == self._status:
            return
        logger.info("Change feed {} status: {} -> {}", self._session_id, self._status, status)
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error("Change feed status listener failed: {}", format_error(e))

    async def subscribe(
        self,
        session_id: str,
        on_update: UpdateCallback,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """
        Start delivering records published for the session.

        Replaces any previous subscription held by this subscriber. Waits at most
        ``connect_timeout`` seconds for the first connection attempt to settle;
        the listener keeps running in the background either way.
        """
        if self._task is not None:
            logger.info("Change feed replacing subscription {} with {}", self._session_id, session_id)
            await self.unsubscribe()

        self._session_id = session_id
        self._closed = False
        self._ready = asyncio.Event()
        self._set_status(FeedStatus.CONNECTING)
        self._task = asyncio.create_task(
            self._run(session_id, on_update, on_error),
            name=f"change-feed:{session_id}",
        )

        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Change feed {} not connected after {}s, continuing in background",
                session_id,
                self._connect_timeout,
            )

    async def unsubscribe(self) -> None:
        """Stop delivery. Safe to call repeatedly and from any state."""
        self._closed = True
        task, self._task = self._task, None

        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self._set_status(FeedStatus.DISCONNECTED)

    async def _run(
        self,
        session_id: str,
        on_update: UpdateCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        channel = self._channel_for(session_id)
        attempts = 0

        while not self._closed:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(channel)
                attempts = 0
                self._set_status(FeedStatus.CONNECTED)
                self._ready.set()

                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self._dispatch(session_id, message.get("data"), on_update)

                if self._closed:
                    break
                raise ConnectionError(f"subscription to {channel} ended")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._closed:
                    break

                attempts += 1
                self._ready.set()
                logger.warning(
                    "Change feed {} disconnected (attempt {}/{}): {}",
                    session_id,
                    attempts,
                    self._max_attempts,
                    e,
                )
                await self._report_error(
                    on_error,
                    FeedDisconnected(errmesg=f"Change feed for {session_id} dropped: {e}"),
                )

                if attempts >= self._max_attempts:
                    logger.error("Change feed {} giving up after {} attempts", session_id, attempts)
                    self._set_status(FeedStatus.DISCONNECTED)
                    return

                delay = min(self._base_delay * (2 ** (attempts - 1)), self._max_delay)
                self._set_status(FeedStatus.RECONNECTING)
                logger.info(
                    "Retrying in {} seconds... (attempt {}/{})",
                    delay,
                    attempts,
                    self._max_attempts,
                )
                await asyncio.sleep(delay)
            finally:
                with contextlib.suppress(Exception):
                    await pubsub.aclose()

    async def _dispatch(self, session_id: str, data: Any, on_update: UpdateCallback) -> None:
        try:
            record = self._model.model_validate_json(data)
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("Change feed {} skipping malformed payload: {}", session_id, e)
            return

        try:
            await _invoke(on_update, record)
        except Exception as e:
            logger.error("Change feed {} update handler failed: {}", session_id, format_error(e))

    async def _report_error(self, on_error: ErrorCallback | None, error: FeedDisconnected) -> None:
        if on_error is None:
            return
        try:
            await _invoke(on_error, error)
        except Exception as e:
            logger.error("Change feed error handler failed: {}", format_error(e))


__all__ = ["ChangeFeedSubscriber"]
