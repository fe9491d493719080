"""Application error types.

Every error carries a stable ``errcode``, a human readable ``errmesg``, a short
``erresid`` for correlating log lines, and the location that raised it.
"""

import inspect
from enum import Enum
from uuid import uuid4


class AppErrorCode(str, Enum):
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_STORE_UNAVAILABLE = "E_STORE_UNAVAILABLE"
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"
    E_SESSION_CODE_TAKEN = "E_SESSION_CODE_TAKEN"
    E_FEED_DISCONNECTED = "E_FEED_DISCONNECTED"
    E_DRIFT_UNRECOVERABLE = "E_DRIFT_UNRECOVERABLE"
    E_INVALID_STATE_TRANSITION = "E_INVALID_STATE_TRANSITION"

    def __str__(self) -> str:
        return self.value


class AppError(Exception):
    """Base error raised by watchsync components."""

    default_errcode: AppErrorCode = AppErrorCode.E_INTERNAL_ERROR

    def __init__(
        self,
        errcode: AppErrorCode | str | None = None,
        errmesg: str = "We are sorry, an error occurred.",
    ) -> None:
        self.errcode = str(errcode or self.default_errcode)
        self.errmesg = errmesg
        self.erresid = uuid4().hex[:10]
        self.caller_info = self._capture_caller()
        super().__init__(f"{self.errcode}: {errmesg}")

    @staticmethod
    def _capture_caller() -> str:
        # Skip our own __init__ frames (subclass __init__ chains included)
        for frame_info in inspect.stack()[1:]:
            if frame_info.function != "__init__":
                module = inspect.getmodule(frame_info.frame)
                module_name = module.__name__ if module else frame_info.filename
                return f"{module_name}:{frame_info.function}:{frame_info.lineno}"
        return "unknown"


class StoreUnavailable(AppError):
    default_errcode = AppErrorCode.E_STORE_UNAVAILABLE


class SessionNotFound(AppError):
    default_errcode = AppErrorCode.E_SESSION_NOT_FOUND


class SessionCodeTaken(AppError):
    default_errcode = AppErrorCode.E_SESSION_CODE_TAKEN


class FeedDisconnected(AppError):
    default_errcode = AppErrorCode.E_FEED_DISCONNECTED


class DriftUnrecoverable(AppError):
    default_errcode = AppErrorCode.E_DRIFT_UNRECOVERABLE


class InvalidStateTransition(AppError):
    default_errcode = AppErrorCode.E_INVALID_STATE_TRANSITION


class InvalidChatMessage(AppError):
    default_errcode = AppErrorCode.E_INVALID_REQUEST


__all__ = [
    "AppError",
    "AppErrorCode",
    "DriftUnrecoverable",
    "FeedDisconnected",
    "InvalidChatMessage",
    "InvalidStateTransition",
    "SessionCodeTaken",
    "SessionNotFound",
    "StoreUnavailable",
]
