"""Core module for configuration and infrastructure."""

from walt.core.config import settings
from walt.core.database import Base, async_session_maker, get_db

__all__ = [
    "settings",
    "Base",
    "async_session_maker",
    "get_db",
]
