import secrets

from ulid import ULID

# Uppercase letters and digits without the look-alikes 0, 1, O and I
SESSION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
SESSION_CODE_LENGTH = 6


def new_ulid(prefix: str | None = None) -> str:
    value = str(ULID()).lower()
    return f"{prefix}{value}" if prefix else value


def new_session_id() -> str:
    return new_ulid("ws_")


def new_participant_id() -> str:
    return new_ulid("pa_")


def new_message_id() -> str:
    return new_ulid("cm_")


def new_session_code() -> str:
    return "".join(secrets.choice(SESSION_CODE_ALPHABET) for _ in range(SESSION_CODE_LENGTH))


def canonicalize_session_code(code: str) -> str:
    return code.strip().upper()


def is_valid_session_code(code: str) -> bool:
    return len(code) == SESSION_CODE_LENGTH and all(c in SESSION_CODE_ALPHABET for c in code)
