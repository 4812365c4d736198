"""Scrapers for Turkish Jockey Club (TJK) data."""

from stablemate.scrapers.base import (
    BaseScraper,
    BrowserUnavailable,
    ScraperError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from stablemate.scrapers.tjk import TJKClient

__all__ = [
    "BaseScraper",
    "BrowserUnavailable",
    "ScraperError",
    "UpstreamTimeout",
    "UpstreamUnavailable",
    "TJKClient",
]
