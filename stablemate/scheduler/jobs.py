"""Background job bodies."""

import logging

from sqlalchemy import select

from stablemate.models.database import TARGET_LOCAL, DatabaseRouter
from stablemate.models.owner import OwnerProfile
from stablemate.rate_limit import RateLimiters
from stablemate.sync.service import SyncService

logger = logging.getLogger(__name__)


def sweep_rate_limiters(limiters: RateLimiters) -> int:
    """Evict rate-limit buckets idle for over an hour."""
    return limiters.sweep()


async def nightly_refresh(db_router: DatabaseRouter, sync_service: SyncService) -> dict:
    """Refresh races, entries and gallops for every owner with a TJK id.

    Each owner gets its own session, so one owner's failure doesn't stop
    the run or leave expired state behind for the next owner.
    """
    results = {"owners": 0, "failed_kinds": 0, "failed_owners": 0}
    async with db_router.session(TARGET_LOCAL) as db:
        owner_ids = (
            await db.execute(
                select(OwnerProfile.id).where(OwnerProfile.official_ref.is_not(None)).order_by(OwnerProfile.id)
            )
        ).scalars().all()
    logger.info(f"Nightly refresh starting for {len(owner_ids)} owners")

    for owner_id in owner_ids:
        async with db_router.session(TARGET_LOCAL) as db:
            owner = await db.get(OwnerProfile, owner_id)
            if owner is None:
                continue
            try:
                counts = await sync_service.refresh_owner(db, owner)
            except Exception as e:
                logger.error(f"Nightly refresh failed for owner {owner_id}: {e}", exc_info=True)
                await db.rollback()
                results["failed_owners"] += 1
                continue
            results["owners"] += 1
            results["failed_kinds"] += sum(1 for c in counts.values() if c is None)
            logger.info(f"Nightly refresh owner {owner_id}: {counts}")

    logger.info(f"Nightly refresh complete: {results}")
    return results
