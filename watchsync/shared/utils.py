from datetime import datetime, timezone
from traceback import TracebackException

utc_now = lambda: datetime.now(timezone.utc)


def format_error(ex: BaseException) -> str:
    return "".join(TracebackException.from_exception(ex).format())
