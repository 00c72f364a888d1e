"""Public entry points of the AniFeed data layer."""

from __future__ import annotations

from app.errors import ServiceError
from app.main import app, create_app
from app.services.catalog import CatalogClient
from app.services.feed import FeedController, FeedMode
from app.services.title_lookup import TitleLookupClient, build_launch_url
from app.services.user_state import MemoryStateStorage, SQLStateStorage, UserStateStore

__all__ = [
    "CatalogClient",
    "FeedController",
    "FeedMode",
    "MemoryStateStorage",
    "SQLStateStorage",
    "ServiceError",
    "TitleLookupClient",
    "UserStateStore",
    "app",
    "build_launch_url",
    "create_app",
]
