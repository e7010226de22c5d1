"""FastAPI dependencies shared by the routers."""
from core.config import get_settings
from db.session import get_async_session
from services.change_feed import ChangeFeed, change_feed


def get_change_feed() -> ChangeFeed:
    """Process-wide change feed; override in tests to observe or isolate events."""
    return change_feed


__all__ = [
    "get_async_session",
    "get_change_feed",
    "get_settings",
]
