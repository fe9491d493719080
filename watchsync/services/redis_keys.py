WATCH_SESSION_KEY = "watch:session:{session_id}"  # session record JSON
WATCH_CODE_KEY = "watch:code:{code}"  # canonical code -> session id
WATCH_SESSION_INDEX_KEY = "watch:sessions"  # sorted set, session id scored by created_at
WATCH_SESSION_CHANNEL = "watch:session:channel:{session_id}"  # post-update records
WATCH_CHAT_KEY = "watch:chat:{session_id}"  # capped list of chat message JSON
WATCH_CHAT_CHANNEL = "watch:chat:channel:{session_id}"  # newly posted chat messages


def session_channel(session_id: str) -> str:
    return WATCH_SESSION_CHANNEL.format(session_id=session_id)


def chat_channel(session_id: str) -> str:
    return WATCH_CHAT_CHANNEL.format(session_id=session_id)
