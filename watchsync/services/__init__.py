from .change_feed import ChangeFeedSubscriber
from .chat_store import ChatStore
from .session_store import SessionStoreClient

__all__ = ["ChangeFeedSubscriber", "ChatStore", "SessionStoreClient"]
