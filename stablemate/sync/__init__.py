"""TJK data sync: normalization, freshness cache and dashboard views."""

from stablemate.sync.cache import CACHE_TTL, CacheKey, FreshnessCache
from stablemate.sync.normalizer import NormalizeResult, normalize, parse_tjk_date
from stablemate.sync.service import RateLimited, SyncResult, SyncService

__all__ = [
    "CACHE_TTL",
    "CacheKey",
    "FreshnessCache",
    "NormalizeResult",
    "normalize",
    "parse_tjk_date",
    "RateLimited",
    "SyncResult",
    "SyncService",
]
