import time


def now() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())


def is_expired(timestamp: int, limit: int) -> bool:
    """True when `timestamp` is more than `limit` seconds in the past."""
    return timestamp + limit < now()
