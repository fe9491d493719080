"""Per-participant chat attached to a watch session."""

from __future__ import annotations

import contextlib
import secrets
from collections.abc import Callable

from loguru import logger

from watchsync.app_config import get_app_environ_config
from watchsync.domain.utils.idgen import new_message_id
from watchsync.schemas import ChatMessage
from watchsync.services.change_feed import ChangeFeedSubscriber
from watchsync.services.chat_store import ChatStore
from watchsync.services.redis_keys import chat_channel
from watchsync.services.session_store import SessionStoreClient
from watchsync.shared.utils import format_error
from watchsync.utils.app_errors import InvalidChatMessage, SessionNotFound, StoreUnavailable

MessageListener = Callable[[ChatMessage], None]


def default_username() -> str:
    return "Guest%04d" % secrets.randbelow(10000)


class WatchChatService:
    """One participant's view of a session chat.

    Keeps the local message list, the display name and the unread counter.
    Messages from other devices received while the chat is closed count as
    unread; opening the chat clears the counter.
    """

    def __init__(
        self,
        session_id: str,
        device_id: str,
        *,
        username: str | None = None,
        chat_store: ChatStore | None = None,
        session_store: SessionStoreClient | None = None,
        feed: ChangeFeedSubscriber | None = None,
        max_message_length: int | None = None,
    ):
        self.session_id = session_id
        self.device_id = device_id
        self.username = (username or "").strip() or default_username()

        self._chat_store = chat_store or ChatStore()
        self._session_store = session_store or SessionStoreClient()
        self._feed = feed or ChangeFeedSubscriber(model=ChatMessage, channel_for=chat_channel)
        if max_message_length is None:
            max_message_length = get_app_environ_config().CHAT_MAX_MESSAGE_LENGTH
        self._max_message_length = max_message_length

        self._messages: list[ChatMessage] = []
        self._seen_ids: set[str] = set()
        self._is_open = False
        self._unread_count = 0
        self._listeners: list[MessageListener] = []

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def unread_count(self) -> int:
        return self._unread_count

    def open(self) -> None:
        self._is_open = True
        self._unread_count = 0

    def close(self) -> None:
        self._is_open = False

    def add_message_listener(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    async def load_history(self) -> list[ChatMessage]:
        """Replace the local list with the stored history, oldest first."""
        try:
            history = await self._chat_store.recent(self.session_id)
        except StoreUnavailable as e:
            logger.warning("Chat history for {} unavailable: {}", self.session_id, e.errmesg)
            return self.messages

        self._messages = history
        self._seen_ids = {m.id for m in history}
        return self.messages

    async def connect(self) -> None:
        await self._feed.subscribe(self.session_id, self._on_message)

    async def aclose(self) -> None:
        await self._feed.unsubscribe()
        self._listeners.clear()

    def validate_text(self, text: str) -> str:
        text = (text or "").strip()
        if not text:
            raise InvalidChatMessage(errmesg="Chat message is empty")
        if len(text) > self._max_message_length:
            raise InvalidChatMessage(
                errmesg=f"Chat message exceeds {self._max_message_length} characters"
            )
        return text

    async def send(self, text: str) -> ChatMessage:
        """
        Post a message as this participant.

        Raises:
            InvalidChatMessage: If the text is blank or too long
            SessionNotFound: If the session is gone
            StoreUnavailable: If Redis cannot be reached
        """
        text = self.validate_text(text)

        session = await self._session_store.get_by_id(self.session_id)
        if session is None:
            raise SessionNotFound(errmesg=f"Watch session {self.session_id} not found")

        message = ChatMessage(
            id=new_message_id(),
            session_id=self.session_id,
            device_id=self.device_id,
            username=self.username,
            message=text,
        )
        return await self._chat_store.post(message)

    def _on_message(self, message: ChatMessage) -> None:
        if message.session_id != self.session_id or message.id in self._seen_ids:
            return
        self._seen_ids.add(message.id)
        self._messages.append(message)

        if not self._is_open and message.device_id != self.device_id:
            self._unread_count += 1

        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error("Chat listener for {} failed: {}", self.session_id, format_error(e))


__all__ = ["WatchChatService", "default_username"]
