"""Base scraper class and upstream error types."""

import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScraperError(Exception):
    """Exception raised when scraping fails."""

    pass


class UpstreamUnavailable(ScraperError):
    """The upstream site could not serve the request (blocked, down, bad response)."""

    pass


class UpstreamTimeout(UpstreamUnavailable):
    """The upstream fetch exceeded its time budget."""

    pass


class BrowserUnavailable(UpstreamUnavailable):
    """Browser automation cannot run in this deployment."""

    pass


class BaseScraper:
    """Base class for scrapers with a lazily created HTTP client."""

    # Default headers to mimic a browser
    DEFAULT_HEADERS = {
        "User-Agent": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8,en;q=0.7",
    }

    def __init__(self, timeout: float = 20.0):
        """Initialize scraper with HTTP client settings."""
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.DEFAULT_HEADERS,
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._client

    @client.setter
    def client(self, value: httpx.AsyncClient) -> None:
        self._client = value

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str, **kwargs: Any) -> httpx.Response:
        """GET a URL, mapping transport failures to UpstreamUnavailable."""
        try:
            logger.info(f"Fetching: {url}")
            response = await self.client.get(url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            logger.error(f"Timeout fetching {url}: {e}")
            raise UpstreamTimeout(f"Timed out: {url}")
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error fetching {url}: {e}")
            raise UpstreamUnavailable(f"HTTP {e.response.status_code}: {url}")
        except httpx.RequestError as e:
            logger.error(f"Request error fetching {url}: {e}")
            raise UpstreamUnavailable(f"Request failed: {url}")

    def parse_html(self, html: str) -> BeautifulSoup:
        """Parse HTML into BeautifulSoup object."""
        return BeautifulSoup(html, "lxml")

    @staticmethod
    async def bounded(awaitable: Awaitable[T], timeout: float, what: str) -> T:
        """Await with a time budget; expiry raises UpstreamTimeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{what} exceeded {timeout:.0f}s budget")
            raise UpstreamTimeout(f"{what} timed out after {timeout:.0f}s")

    @staticmethod
    def clean_text(text: Optional[str]) -> Optional[str]:
        """Clean and normalize text."""
        if text is None:
            return None
        return " ".join(text.strip().split())
