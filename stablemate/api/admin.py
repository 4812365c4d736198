"""Admin endpoints: TJK horse lookup and the local/prod database switch."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from stablemate.api.errors import upstream_http_error
from stablemate.auth import require_admin
from stablemate.config import settings
from stablemate.models.database import (
    DB_PREFERENCE_COOKIE,
    TARGET_LOCAL,
    TARGET_PROD,
    DatabaseRouter,
    describe_url,
    get_db_target,
    get_router,
)
from stablemate.rate_limit import RateLimiters, get_client_ip, get_rate_limiters
from stablemate.scrapers.base import ScraperError
from stablemate.scrapers.tjk import TJKClient, get_tjk_client
from stablemate.sync.service import RateLimited

logger = logging.getLogger(__name__)

router = APIRouter()

DB_PREFERENCE_MAX_AGE = 60 * 60 * 24 * 7  # 7 days


class DbSwitchRequest(BaseModel):
    preference: str


def _horse_to_dict(horse: dict) -> dict:
    return {
        "name": horse["name"],
        "yob": horse.get("yob"),
        "gender": horse.get("gender"),
        "breed": horse.get("breed"),
        "status": horse.get("status"),
        "externalRef": horse.get("external_ref"),
        "sire": horse.get("sire"),
        "dam": horse.get("dam"),
    }


@router.get("/tjk/horses")
async def tjk_horses(
    request: Request,
    ownerRef: str = Query(...),
    ownerName: str = Query(""),
    admin: dict = Depends(require_admin),
    limiters: RateLimiters = Depends(get_rate_limiters),
    client: TJKClient = Depends(get_tjk_client),
):
    """List a TJK owner's horses for import."""
    client_ip = get_client_ip(request)
    if not limiters.tjk.check(client_ip):
        raise upstream_http_error(RateLimited(client_ip))

    logger.info(f"Admin {admin.get('id')} listing TJK horses for {ownerName or ownerRef}")
    try:
        horses = await client.search_horses(ownerRef)
    except ScraperError as e:
        logger.error(f"TJK horse search failed for owner {ownerRef}: {e}")
        raise upstream_http_error(e)
    return {"horses": [_horse_to_dict(h) for h in horses]}


@router.get("/db-switch")
async def db_switch_status(
    request: Request,
    admin: dict = Depends(require_admin),
    db_router: DatabaseRouter = Depends(get_router),
):
    """Current database preference and which targets are configured."""
    current = request.cookies.get(DB_PREFERENCE_COOKIE) or TARGET_LOCAL
    return {"current": current, "available": db_router.available()}


@router.post("/db-switch")
async def db_switch(
    body: DbSwitchRequest,
    admin: dict = Depends(require_admin),
    db_router: DatabaseRouter = Depends(get_router),
):
    """Switch this admin's requests between the local and production database."""
    preference = body.preference
    if preference not in (TARGET_LOCAL, TARGET_PROD):
        raise HTTPException(status_code=400, detail='Invalid preference. Must be "local" or "prod"')
    if preference == TARGET_PROD and not db_router.available()[TARGET_PROD]:
        raise HTTPException(status_code=400, detail="PROD_DATABASE_URL is not configured")

    disposed = await db_router.clear()
    logger.info(f"Admin {admin.get('id')} switched to {preference} database ({disposed} engines disposed)")

    response = JSONResponse({
        "success": True,
        "preference": preference,
        "message": f"Switched to {'production' if preference == TARGET_PROD else 'local'} database",
    })
    response.set_cookie(
        DB_PREFERENCE_COOKIE,
        preference,
        max_age=DB_PREFERENCE_MAX_AGE,
        path="/",
        samesite="lax",
        secure=not settings.debug,
        httponly=True,
    )
    return response


@router.get("/db-status")
async def db_status(
    request: Request,
    admin: dict = Depends(require_admin),
    db_router: DatabaseRouter = Depends(get_router),
):
    """Which database this admin's requests currently hit (URL masked)."""
    target = db_router.resolve(get_db_target(request))
    info = describe_url(db_router.url_for(target))
    return {
        **info,
        "currentPreference": request.cookies.get(DB_PREFERENCE_COOKIE) or TARGET_LOCAL,
        "hasProdDb": db_router.available()[TARGET_PROD],
    }
