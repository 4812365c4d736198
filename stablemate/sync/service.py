"""Cache-first sync of TJK data per owner.

A request is served from the freshness cache when the entry is younger
than the TTL. Otherwise one refresh per (owner, kind) runs at a time:
concurrent callers await the same task. A refresh that is rate limited
or fails upstream falls back to the stale entry when there is one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stablemate.config import ist_now_naive, settings
from stablemate.models.cache import CACHE_KINDS, KIND_GALLOPS, KIND_RACES, KIND_REGISTRATIONS
from stablemate.models.owner import Horse, OwnerProfile
from stablemate.rate_limit import RateLimiter
from stablemate.scrapers.base import BaseScraper, ScraperError, UpstreamUnavailable
from stablemate.scrapers.tjk import TJKClient
from stablemate.sync.cache import CACHE_TTL, CacheKey, CachedRecords, FreshnessCache
from stablemate.sync.normalizer import load_records, normalize

logger = logging.getLogger(__name__)

SOURCE_CACHE = "cache"
SOURCE_FRESH = "fresh"
SOURCE_STALE = "stale"


class RateLimited(Exception):
    """The client exhausted its scraping budget and no cached data exists."""

    def __init__(self, identifier: str, remaining: int = 0):
        super().__init__(f"Rate limit exceeded for {identifier}")
        self.identifier = identifier
        self.remaining = remaining


@dataclass
class SyncResult:
    records: list = field(default_factory=list)
    source: str = SOURCE_CACHE
    cached_at: Optional[datetime] = None
    dropped: int = 0

    @property
    def cached_at_iso(self) -> Optional[str]:
        return self.cached_at.isoformat() if self.cached_at else None


class SyncService:
    """Owns the single-flight map; built once in the app lifespan."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        client: TJKClient,
        ttl: timedelta = CACHE_TTL,
        clock: Callable[[], datetime] = ist_now_naive,
        fetch_timeout: Optional[float] = None,
    ):
        self.rate_limiter = rate_limiter
        self.client = client
        self.ttl = ttl
        self.clock = clock
        self.fetch_timeout = fetch_timeout or settings.fetch_timeout
        self._inflight: dict[CacheKey, asyncio.Task] = {}

    def inflight(self) -> int:
        return len(self._inflight)

    async def get_view(
        self,
        session: AsyncSession,
        owner: OwnerProfile,
        kind: str,
        client_ip: str,
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """Records for one owner and kind, from cache or a fresh fetch."""
        if kind not in CACHE_KINDS:
            raise ValueError(f"Unknown resource kind: {kind}")
        now = now or self.clock()
        key = CacheKey(owner.id, kind)
        cache = FreshnessCache(session)

        cached = await cache.get(key)
        if cache.is_fresh(cached, now, self.ttl):
            return SyncResult(
                records=load_records(kind, cached.records), source=SOURCE_CACHE, cached_at=cached.cached_at,
            )

        return await self._single_flight(
            key, lambda: self._refresh(session, owner, kind, now, stale=cached, client_ip=client_ip),
        )

    async def _single_flight(self, key: CacheKey, factory: Callable[[], Any]) -> SyncResult:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda _t: self._inflight.pop(key, None))
        else:
            logger.debug(f"Joining in-flight refresh for {key.kind} of owner {key.owner_id}")
        # A cancelled follower must not cancel the shared refresh
        return await asyncio.shield(task)

    def _stale_result(self, kind: str, stale: CachedRecords) -> SyncResult:
        return SyncResult(
            records=load_records(kind, stale.records), source=SOURCE_STALE, cached_at=stale.cached_at,
        )

    async def _refresh(
        self,
        session: AsyncSession,
        owner: OwnerProfile,
        kind: str,
        now: datetime,
        stale: Optional[CachedRecords] = None,
        client_ip: Optional[str] = None,
    ) -> SyncResult:
        # client_ip None means an internal refresh that isn't rate limited
        if client_ip is not None and not self.rate_limiter.check(client_ip):
            if stale is not None:
                logger.info(f"Rate limited {client_ip}, serving stale {kind} for owner {owner.id}")
                return self._stale_result(kind, stale)
            raise RateLimited(client_ip, self.rate_limiter.get_remaining(client_ip))

        try:
            raw = await self._fetch_raw(session, owner, kind)
        except UpstreamUnavailable as e:
            if stale is not None:
                logger.warning(f"TJK fetch failed for {kind} of owner {owner.id} ({e}), serving stale")
                return self._stale_result(kind, stale)
            raise

        result = normalize(kind, raw)
        if result.dropped:
            logger.warning(
                f"Owner {owner.id} {kind}: kept {len(result.records)}, dropped {result.dropped} malformed rows"
            )
        await FreshnessCache(session).put(CacheKey(owner.id, kind), [r.to_dict() for r in result.records], now)
        await session.commit()
        logger.info(f"Refreshed {kind} for owner {owner.id}: {len(result.records)} records")
        return SyncResult(records=result.records, source=SOURCE_FRESH, cached_at=now, dropped=result.dropped)

    async def _fetch_raw(self, session: AsyncSession, owner: OwnerProfile, kind: str) -> list[dict]:
        if not owner.official_ref:
            logger.info(f"Owner {owner.id} has no TJK id, nothing to fetch")
            return []

        if kind == KIND_RACES:
            return await self.client.fetch_owner_races(owner.official_ref, include_entries=False)
        if kind == KIND_REGISTRATIONS:
            return await self.client.fetch_owner_races(owner.official_ref, include_entries=True)
        if kind == KIND_GALLOPS:
            horses = await owner_horses(session, owner.id)
            tracked = [(h.external_ref, h.name) for h in horses if h.external_ref]
            # One budget for the whole stable, not one per horse
            return await BaseScraper.bounded(
                self._fetch_gallops(tracked), self.fetch_timeout, f"TJK gallops for owner {owner.id}",
            )
        raise ValueError(f"Unknown resource kind: {kind}")

    async def _fetch_gallops(self, tracked: list[tuple[str, str]]) -> list[dict]:
        rows: list[dict] = []
        failures: list[UpstreamUnavailable] = []
        for horse_ref, horse_name in tracked:
            try:
                rows.extend(await self.client.fetch_horse_gallops(horse_ref, horse_name))
            except UpstreamUnavailable as e:
                logger.warning(f"Gallops fetch failed for horse {horse_ref}: {e}")
                failures.append(e)
        if tracked and len(failures) == len(tracked):
            raise failures[-1]
        return rows

    async def refresh_owner(
        self, session: AsyncSession, owner: OwnerProfile, now: Optional[datetime] = None,
    ) -> dict[str, Optional[int]]:
        """Refresh every kind for an owner without rate limiting.

        Returns record counts per kind; None marks a kind that failed.
        """
        now = now or self.clock()
        counts: dict[str, Optional[int]] = {}
        for kind in CACHE_KINDS:
            key = CacheKey(owner.id, kind)
            try:
                result = await self._single_flight(key, lambda k=kind: self._refresh(session, owner, k, now))
                counts[kind] = len(result.records)
            except ScraperError as e:
                logger.error(f"Nightly refresh of {kind} failed for owner {owner.id}: {e}")
                counts[kind] = None
        return counts


async def owner_horses(session: AsyncSession, owner_id: str) -> list[Horse]:
    result = await session.execute(select(Horse).where(Horse.owner_id == owner_id).order_by(Horse.name))
    return list(result.scalars().all())


async def find_owner(session: AsyncSession, user: dict) -> Optional[OwnerProfile]:
    """Owner profile for a session user, by owner_id or by user id."""
    owner_id = user.get("owner_id")
    if owner_id:
        owner = await session.get(OwnerProfile, owner_id)
        if owner is not None:
            return owner
    if not user.get("id"):
        return None
    result = await session.execute(select(OwnerProfile).where(OwnerProfile.user_id == user["id"]))
    return result.scalar_one_or_none()


def get_sync_service(request: Request) -> SyncService:
    """FastAPI dependency returning the process's sync service."""
    service: Optional[SyncService] = getattr(request.app.state, "sync_service", None)
    if service is None:
        raise RuntimeError("Sync service not initialised (app lifespan not run)")
    return service
