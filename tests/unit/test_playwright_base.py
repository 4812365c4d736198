"""Tests for shared browser launch and page navigation errors."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from stablemate.scrapers import playwright_base
from stablemate.scrapers.base import BrowserUnavailable, UpstreamTimeout, UpstreamUnavailable

URL = "https://www.tjk.org/TR/YarisSever/Query/Page/AtIstatistikleri"


@pytest.fixture
def fake_playwright(monkeypatch):
    """Replace Playwright startup with a slow, countable launcher."""
    browser = MagicMock()
    browser.is_connected.return_value = True

    async def slow_launch(**kwargs):
        await asyncio.sleep(0.01)
        return browser

    pw = MagicMock()
    pw.chromium.launch = AsyncMock(side_effect=slow_launch)
    pw.stop = AsyncMock()
    starter = MagicMock()
    starter.start = AsyncMock(return_value=pw)

    monkeypatch.setattr(playwright_base, "async_playwright", MagicMock(return_value=starter))
    monkeypatch.setattr(playwright_base, "_browser", None)
    monkeypatch.setattr(playwright_base, "_playwright", None)
    monkeypatch.setattr(playwright_base, "_shutdown_task", None)
    monkeypatch.setattr(playwright_base, "_launch_lock", asyncio.Lock())
    return pw, browser


# ── Browser launch ──


@pytest.mark.asyncio
class TestGetBrowser:
    async def test_concurrent_callers_share_one_launch(self, fake_playwright):
        pw, browser = fake_playwright
        first, second = await asyncio.gather(playwright_base.get_browser(), playwright_base.get_browser())

        assert first is browser
        assert second is browser
        pw.chromium.launch.assert_awaited_once()

    async def test_connected_browser_reused(self, fake_playwright):
        pw, browser = fake_playwright
        await playwright_base.get_browser()
        assert await playwright_base.get_browser() is browser
        assert pw.chromium.launch.await_count == 1

    async def test_launch_failure_is_browser_unavailable(self, fake_playwright):
        pw, _ = fake_playwright
        pw.chromium.launch.side_effect = PlaywrightError("Executable doesn't exist")

        with pytest.raises(BrowserUnavailable):
            await playwright_base.get_browser()
        pw.stop.assert_awaited_once()
        assert playwright_base._playwright is None
        assert playwright_base._browser is None


# ── Navigation ──


@pytest.mark.asyncio
class TestWaitAndGetContent:
    async def test_navigation_timeout_is_upstream_timeout(self):
        page = MagicMock()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded"))

        with pytest.raises(UpstreamTimeout):
            await playwright_base.wait_and_get_content(page, URL)

    async def test_navigation_error_is_upstream_unavailable(self):
        page = MagicMock()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_CONNECTION_RESET"))

        with pytest.raises(UpstreamUnavailable) as exc:
            await playwright_base.wait_and_get_content(page, URL)
        assert not isinstance(exc.value, (UpstreamTimeout, BrowserUnavailable))

    async def test_missing_selector_still_returns_content(self):
        page = MagicMock()
        page.goto = AsyncMock()
        page.wait_for_selector = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 15000ms exceeded"))
        page.content = AsyncMock(return_value="<html><table></table></html>")

        html = await playwright_base.wait_and_get_content(page, URL, wait_selector="table")
        assert html == "<html><table></table></html>"
