"""Per-horse TJK detail refresh: career stats, earnings, pedigree and race history."""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from stablemate.api.errors import upstream_http_error
from stablemate.auth import ROLE_ADMIN, ROLE_OWNER, require_user
from stablemate.config import ist_now_naive
from stablemate.models.database import get_db
from stablemate.models.owner import Horse
from stablemate.rate_limit import RateLimiters, get_client_ip, get_rate_limiters
from stablemate.scrapers.base import ScraperError
from stablemate.scrapers.tjk import TJKClient, get_tjk_client
from stablemate.sync.service import RateLimited, find_owner

logger = logging.getLogger(__name__)

router = APIRouter()


async def _can_refresh(db: AsyncSession, user: dict, horse: Horse) -> bool:
    if user.get("role") == ROLE_ADMIN:
        return True
    if user.get("role") != ROLE_OWNER:
        return False
    owner = await find_owner(db, user)
    return owner is not None and owner.id == horse.owner_id


def apply_detail(horse: Horse, detail: dict[str, Any], fetched_at: datetime) -> None:
    """Copy a fetched TJK detail onto the horse row."""
    totals = detail.get("stats", {}).get("total") or {}
    pedigree = detail.get("pedigree") or {}

    horse.handicap_points = detail.get("handicap_points")
    horse.total_races = totals.get("races")
    horse.first_places = totals.get("first")
    horse.second_places = totals.get("second")
    horse.third_places = totals.get("third")
    horse.prize_money = detail.get("prize_money")
    horse.total_earnings = detail.get("total_earnings") or totals.get("earnings")
    horse.sire_name = pedigree.get("sire")
    horse.dam_name = pedigree.get("dam")
    horse.sire_sire = pedigree.get("sire_sire")
    horse.sire_dam = pedigree.get("sire_dam")
    horse.dam_sire = pedigree.get("dam_sire")
    horse.dam_dam = pedigree.get("dam_dam")
    horse.data_fetched_at = fetched_at
    horse.data_fetch_error = None


def _race_to_dict(race: dict[str, Any]) -> dict[str, Any]:
    return {
        "date": race.get("date"),
        "city": race.get("city"),
        "distance": race.get("distance"),
        "surface": race.get("surface"),
        "surfaceType": race.get("surface_type"),
        "position": race.get("position"),
        "finishTime": race.get("finish_time"),
        "weight": race.get("weight"),
        "jockeyName": race.get("jockey_name"),
        "jockeyRef": race.get("jockey_ref"),
        "raceNumber": race.get("race_number"),
        "raceName": race.get("race_name"),
        "raceType": race.get("race_type"),
        "trainerName": race.get("trainer_name"),
        "trainerRef": race.get("trainer_ref"),
        "handicapPoints": race.get("handicap_points"),
        "prizeMoney": race.get("prize_money"),
    }


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


@router.post("/{horse_id}/fetch-detail")
async def fetch_detail(
    horse_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiters: RateLimiters = Depends(get_rate_limiters),
    client: TJKClient = Depends(get_tjk_client),
):
    """Fetch a horse's TJK detail and pedigree, store the summary and return the race history."""
    user = require_user(request)
    horse = await db.get(Horse, horse_id)
    if horse is None:
        raise HTTPException(status_code=404, detail="Horse not found")
    if not await _can_refresh(db, user, horse):
        logger.warning(f"User {user.get('id')} denied detail refresh of horse {horse_id}")
        raise HTTPException(status_code=403, detail="Forbidden")
    if not horse.external_ref:
        raise HTTPException(status_code=400, detail="Horse has no TJK id")

    client_ip = get_client_ip(request)
    if not limiters.tjk.check(client_ip):
        raise upstream_http_error(RateLimited(client_ip))

    try:
        detail = await client.fetch_horse_detail(horse.external_ref)
    except ScraperError as e:
        logger.error(f"TJK detail fetch failed for horse {horse_id}: {e}")
        horse.data_fetch_error = str(e)[:500]
        await db.commit()
        raise upstream_http_error(e)

    apply_detail(horse, detail, ist_now_naive())
    await db.commit()

    races = detail.get("races", [])
    logger.info(f"Horse {horse_id} detail refreshed: {len(races)} races")
    return {
        "success": True,
        "horse": horse.to_dict(),
        "stats": detail.get("stats", {}),
        "earnings": {
            "prizeMoney": detail.get("prize_money"),
            "ownerPremium": detail.get("owner_premium"),
            "breederPremium": detail.get("breeder_premium"),
            "totalEarnings": detail.get("total_earnings"),
        },
        "pedigree": {_camel(k): v for k, v in (detail.get("pedigree") or {}).items()},
        "racesCount": len(races),
        "races": [_race_to_dict(r) for r in races],
    }
