"""Shared Playwright browser management for pages behind anti-bot protection."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Error as PlaywrightError, Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from stablemate.scrapers.base import BrowserUnavailable, UpstreamTimeout, UpstreamUnavailable

logger = logging.getLogger(__name__)

# Module-level singleton for browser reuse
_browser: Optional[Browser] = None
_playwright = None
_shutdown_task: Optional[asyncio.Task] = None
_active_pages = 0

# Serialize launches so concurrent first requests share one Chromium
_launch_lock = asyncio.Lock()

# Auto-shutdown after 5 minutes of inactivity
BROWSER_IDLE_TIMEOUT = 300  # seconds

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _cancel_shutdown_timer() -> None:
    """Cancel pending auto-shutdown if any."""
    global _shutdown_task
    if _shutdown_task is not None and not _shutdown_task.done():
        _shutdown_task.cancel()
        _shutdown_task = None


def _schedule_shutdown_timer() -> None:
    """Schedule browser auto-shutdown after idle timeout."""
    global _shutdown_task
    _cancel_shutdown_timer()

    async def _auto_shutdown():
        await asyncio.sleep(BROWSER_IDLE_TIMEOUT)
        if _browser is not None and _active_pages == 0:
            logger.info(f"Browser idle for {BROWSER_IDLE_TIMEOUT}s, auto-closing to free memory")
            await close_browser()

    try:
        _shutdown_task = asyncio.get_running_loop().create_task(_auto_shutdown())
    except RuntimeError:
        pass  # No event loop (e.g. during testing)


async def get_browser() -> Browser:
    """Get or launch the shared Chromium browser instance (lazy-start).

    Raises BrowserUnavailable when Chromium isn't installed in this
    environment (typical on serverless hosts).
    """
    global _browser, _playwright
    _cancel_shutdown_timer()
    if _browser is not None and _browser.is_connected():
        return _browser

    async with _launch_lock:
        # Another caller may have launched while we waited
        if _browser is not None and _browser.is_connected():
            return _browser
        try:
            _playwright = await async_playwright().start()
            _browser = await _playwright.chromium.launch(
                headless=True,
                args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-blink-features=AutomationControlled"],
            )
        except PlaywrightError as e:
            logger.error(f"Playwright browser launch failed: {e}")
            if _playwright is not None:
                await _playwright.stop()
                _playwright = None
            _browser = None
            raise BrowserUnavailable(f"Browser automation unavailable: {e}")
        logger.info("Playwright browser launched")
        return _browser


async def close_browser() -> None:
    """Close the shared browser instance."""
    global _browser, _playwright
    _cancel_shutdown_timer()
    if _browser is not None:
        await _browser.close()
        _browser = None
    if _playwright is not None:
        await _playwright.stop()
        _playwright = None
        logger.info("Playwright browser closed")


@asynccontextmanager
async def new_page(timeout: float = 30000):
    """Async context manager that yields a new browser page in a fresh context."""
    global _active_pages
    browser = await get_browser()
    context: BrowserContext = await browser.new_context(
        user_agent=USER_AGENT,
        viewport={"width": 1280, "height": 900},
        locale="tr-TR",
    )
    page: Page = await context.new_page()
    page.set_default_timeout(timeout)
    _active_pages += 1

    try:
        yield page
    finally:
        _active_pages -= 1
        await context.close()
        _schedule_shutdown_timer()


async def wait_and_get_content(page: Page, url: str, wait_selector: Optional[str] = None) -> str:
    """Navigate to URL, optionally wait for a selector, return page HTML."""
    try:
        await page.goto(url, wait_until="networkidle", timeout=30000)
    except PlaywrightTimeoutError as e:
        raise UpstreamTimeout(f"Navigation timed out for {url}") from e
    except PlaywrightError as e:
        raise UpstreamUnavailable(f"Navigation failed for {url}: {e}") from e

    if wait_selector:
        try:
            await page.wait_for_selector(wait_selector, timeout=15000)
        except PlaywrightError:
            logger.warning(f"Timed out waiting for {wait_selector} on {url}")

    return await page.content()


async def fetch_page_html(url: str, wait_selector: Optional[str] = None) -> str:
    """Open a page, load URL and return its rendered HTML."""
    async with new_page() as page:
        return await wait_and_get_content(page, url, wait_selector)
