"""Database models for Stablemate."""

from stablemate.models.database import Base, DatabaseRouter, get_db, init_db
from stablemate.models.owner import Horse, OwnerProfile
from stablemate.models.cache import CacheEntry, CACHE_KINDS

__all__ = [
    "Base",
    "DatabaseRouter",
    "get_db",
    "init_db",
    "Horse",
    "OwnerProfile",
    "CacheEntry",
    "CACHE_KINDS",
]
