"""Owner dashboard endpoints: recent races, upcoming entries and gallops."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from stablemate.api.errors import upstream_http_error
from stablemate.auth import ROLE_OWNER, require_user
from stablemate.models.cache import KIND_GALLOPS, KIND_RACES, KIND_REGISTRATIONS
from stablemate.models.database import get_db
from stablemate.models.owner import OwnerProfile
from stablemate.rate_limit import get_client_ip
from stablemate.scrapers.base import ScraperError
from stablemate.sync.service import (
    RateLimited,
    SyncResult,
    SyncService,
    find_owner,
    get_sync_service,
    owner_horses,
)
from stablemate.sync.views import entries_view, gallops_view, recent_races_view

logger = logging.getLogger(__name__)

router = APIRouter()


def _empty(key: str) -> dict:
    return {key: [], "source": None, "cachedAt": None}


async def _dashboard_owner(request: Request, db: AsyncSession) -> Optional[OwnerProfile]:
    """Owner profile of the session user; None for other roles or missing profiles."""
    user = require_user(request)
    if user.get("role") != ROLE_OWNER:
        logger.info(f"User {user.get('id')} is {user.get('role')}, returning empty dashboard")
        return None
    owner = await find_owner(db, user)
    if owner is None:
        logger.info(f"No owner profile for user {user.get('id')}")
    return owner


async def _sync(
    request: Request, db: AsyncSession, sync: SyncService, owner: OwnerProfile, kind: str,
) -> SyncResult:
    try:
        return await sync.get_view(db, owner, kind, get_client_ip(request))
    except (RateLimited, ScraperError) as e:
        logger.warning(f"Dashboard {kind} for owner {owner.id} failed: {e}")
        raise upstream_http_error(e)


@router.get("/recent-races")
async def recent_races(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    sync: SyncService = Depends(get_sync_service),
):
    """Most recent past races across the owner's horses."""
    owner = await _dashboard_owner(request, db)
    if owner is None:
        return _empty("races")

    result = await _sync(request, db, sync, owner, KIND_RACES)
    races = recent_races_view(result.records, limit)
    logger.info(f"Returning {len(races)} recent races for owner {owner.id} ({result.source})")
    return {"races": races, "source": result.source, "cachedAt": result.cached_at_iso}


@router.get("/registrations")
async def registrations(
    request: Request,
    db: AsyncSession = Depends(get_db),
    sync: SyncService = Depends(get_sync_service),
):
    """Upcoming registrations and declarations, soonest first."""
    owner = await _dashboard_owner(request, db)
    if owner is None:
        return _empty("registrations")

    result = await _sync(request, db, sync, owner, KIND_REGISTRATIONS)
    horse_refs = {h.name: h.external_ref for h in await owner_horses(db, owner.id) if h.external_ref}
    entries = entries_view(result.records, horse_refs=horse_refs)
    return {"registrations": entries, "source": result.source, "cachedAt": result.cached_at_iso}


@router.get("/gallops")
async def gallops(
    request: Request,
    days: int = Query(14, ge=1, le=90),
    db: AsyncSession = Depends(get_db),
    sync: SyncService = Depends(get_sync_service),
):
    """Gallops from the last ``days`` days, newest first."""
    owner = await _dashboard_owner(request, db)
    if owner is None:
        return _empty("gallops")

    result = await _sync(request, db, sync, owner, KIND_GALLOPS)
    return {"gallops": gallops_view(result.records, days), "source": result.source, "cachedAt": result.cached_at_iso}
