"""Per-owner freshness cache over the cache_entries table."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stablemate.config import IST_TZ, ist_now_naive, settings
from stablemate.models.cache import CacheEntry

logger = logging.getLogger(__name__)

CACHE_TTL = timedelta(hours=settings.cache_ttl_hours)


class CacheKey(NamedTuple):
    owner_id: str
    kind: str


@dataclass
class CachedRecords:
    records: list[dict]
    cached_at: datetime


def _naive(dt: datetime) -> datetime:
    """Stored timestamps are naive Istanbul time; compare like with like."""
    if dt.tzinfo is not None:
        return dt.astimezone(IST_TZ).replace(tzinfo=None)
    return dt


def is_fresh(cached_at: Optional[datetime], now: Optional[datetime] = None, ttl: timedelta = CACHE_TTL) -> bool:
    """Fresh iff younger than ``ttl``; an entry exactly ``ttl`` old is stale."""
    if cached_at is None:
        return False
    now = _naive(now) if now is not None else ist_now_naive()
    return now - _naive(cached_at) < ttl


class FreshnessCache:
    """Read and overwrite cached records inside the caller's session.

    ``put`` flushes but doesn't commit; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _entry(self, key: CacheKey) -> Optional[CacheEntry]:
        result = await self.session.execute(
            select(CacheEntry).where(CacheEntry.owner_id == key.owner_id, CacheEntry.kind == key.kind)
        )
        return result.scalar_one_or_none()

    async def get(self, key: CacheKey) -> Optional[CachedRecords]:
        entry = await self._entry(key)
        if entry is None:
            return None
        return CachedRecords(records=entry.records, cached_at=entry.cached_at)

    async def put(self, key: CacheKey, records: list[dict], now: Optional[datetime] = None) -> None:
        """Replace the records for a key wholesale, stamping ``now``."""
        cached_at = _naive(now) if now is not None else ist_now_naive()
        payload = json.dumps(records, ensure_ascii=False)
        entry = await self._entry(key)
        if entry is None:
            self.session.add(CacheEntry(
                owner_id=key.owner_id, kind=key.kind, records_json=payload, cached_at=cached_at,
            ))
        else:
            entry.records_json = payload
            entry.cached_at = cached_at
        await self.session.flush()
        logger.debug(f"Cached {len(records)} {key.kind} records for owner {key.owner_id}")

    def is_fresh(self, cached: Optional[CachedRecords], now: Optional[datetime] = None, ttl: timedelta = CACHE_TTL) -> bool:
        return cached is not None and is_fresh(cached.cached_at, now, ttl)
