"""TJK owner search (used while onboarding an owner)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from stablemate.api.errors import upstream_http_error
from stablemate.auth import require_user
from stablemate.rate_limit import RateLimiters, get_client_ip, get_rate_limiters
from stablemate.scrapers.base import ScraperError
from stablemate.scrapers.tjk import TJKClient, get_tjk_client
from stablemate.sync.service import RateLimited

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/owners")
async def search_owners(
    request: Request,
    q: str = Query(""),
    limiters: RateLimiters = Depends(get_rate_limiters),
    client: TJKClient = Depends(get_tjk_client),
):
    """Search TJK owners by name (at least 2 characters)."""
    require_user(request)
    query = q.strip()
    if len(query) < 2:
        raise HTTPException(status_code=400, detail="Query must be at least 2 characters")

    client_ip = get_client_ip(request)
    if not limiters.tjk.check(client_ip):
        raise upstream_http_error(RateLimited(client_ip))

    try:
        results = await client.search_owners(query)
    except ScraperError as e:
        logger.error(f"TJK owner search failed for '{query}': {e}")
        raise upstream_http_error(e)
    return {"results": results}
