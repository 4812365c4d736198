"""Translate sync and scraper failures into HTTP errors."""

import logging

from fastapi import HTTPException

from stablemate.scrapers.base import BrowserUnavailable, ScraperError, UpstreamTimeout, UpstreamUnavailable
from stablemate.sync.service import RateLimited

logger = logging.getLogger(__name__)


def upstream_http_error(e: Exception) -> HTTPException:
    """HTTPException for a failed TJK-backed request."""
    if isinstance(e, RateLimited):
        return HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": "60"},
        )
    if isinstance(e, BrowserUnavailable):
        return HTTPException(
            status_code=503,
            detail={"code": "BROWSER_UNAVAILABLE", "message": "Browser automation is not available on this server."},
        )
    if isinstance(e, UpstreamTimeout):
        return HTTPException(status_code=500, detail="TJK did not respond in time")
    if isinstance(e, (UpstreamUnavailable, ScraperError)):
        return HTTPException(status_code=500, detail="TJK is unavailable")
    logger.exception("Unexpected error serving TJK data")
    return HTTPException(status_code=500, detail="Internal error")
