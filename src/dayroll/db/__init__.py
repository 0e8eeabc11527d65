"""Database package for Dayroll."""

from dayroll.db.models import Base, ContentItem, SubscriptionRow
from dayroll.db.repositories import ContentRepository, SubscriptionRepository
from dayroll.db.session import close_db, get_session, init_db

__all__ = [
    "Base",
    "ContentItem",
    "ContentRepository",
    "SubscriptionRepository",
    "SubscriptionRow",
    "close_db",
    "get_session",
    "init_db",
]
