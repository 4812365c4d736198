"""Tests for the TJK client (httpx transport mocked, browser fetcher stubbed)."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock

import httpx
import pytest

from stablemate.scrapers.base import UpstreamTimeout, UpstreamUnavailable
from stablemate.scrapers.tjk import HORSE_PAGE_SIZE, TJKClient

TODAY = date(2024, 3, 10)


def _horse_rows(start: int, count: int) -> str:
    return "".join(
        f'<tr><td><a href="/x?QueryParameter_AtId={i}">AT {i}</a></td>'
        f"<td>Arap</td><td>Erkek</td><td>3 y</td></tr>"
        for i in range(start, start + count)
    )


def _horse_page(rows: str, total: int, shown: int) -> str:
    return (
        f"<div>Toplam {total} sonuçtan {shown} tanesi gösteriliyor</div>"
        f"<table><tbody>{rows}</tbody></table>"
    )


RACES_HTML = """
<table>
  <thead><tr><th>Tarih</th><th>At İsmi</th><th>Şehir</th><th>Msf</th><th>S</th><th>Jokey</th></tr></thead>
  <tbody><tr><td>05.03.2024</td><td>KARAYEL</td><td>İstanbul</td><td>1400</td><td>2</td><td>H. KARATAŞ</td></tr></tbody>
</table>
"""


def _client(handler=None, page_fetcher=None, fetch_timeout=5.0) -> TJKClient:
    client = TJKClient(
        base_url="https://tjk.test",
        fetch_timeout=fetch_timeout,
        page_fetcher=page_fetcher or AsyncMock(return_value=""),
    )
    if handler is not None:
        client.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


# ── Owner search ──


@pytest.mark.asyncio
class TestSearchOwners:
    async def test_json_entities_mapped(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"entities": [{"id": 77, "text": "AYŞE YILMAZ"}]})

        client = _client(handler)
        try:
            results = await client.search_owners("ayşe")
        finally:
            await client.close()

        assert results == [{"label": "AYŞE YILMAZ", "officialName": "AYŞE YILMAZ", "externalRef": "77"}]
        assert "parameterName=UzerineKosanSahipId" in str(seen[0].url)
        assert seen[0].headers["X-Requested-With"] == "XMLHttpRequest"

    async def test_html_instead_of_json_is_upstream_error(self):
        client = _client(lambda request: httpx.Response(200, text="<html>Just a moment...</html>"))
        try:
            with pytest.raises(UpstreamUnavailable):
                await client.search_owners("ayşe")
        finally:
            await client.close()

    async def test_http_error_mapped(self):
        client = _client(lambda request: httpx.Response(500))
        try:
            with pytest.raises(UpstreamUnavailable):
                await client.search_owners("ayşe")
        finally:
            await client.close()


# ── Horse listing ──


@pytest.mark.asyncio
class TestSearchHorses:
    async def test_plain_http_success_skips_browser(self):
        html = _horse_page(_horse_rows(1, 3), total=3, shown=3)
        browser = AsyncMock()
        client = _client(lambda request: httpx.Response(200, text=html), page_fetcher=browser)
        try:
            horses = await client.search_horses("5432", today=TODAY)
        finally:
            await client.close()

        assert [h["external_ref"] for h in horses] == ["1", "2", "3"]
        assert horses[0]["yob"] == 2021
        browser.assert_not_awaited()

    async def test_blocked_request_falls_back_to_browser(self):
        browser = AsyncMock(return_value=_horse_page(_horse_rows(1, 2), total=2, shown=2))
        client = _client(lambda request: httpx.Response(403), page_fetcher=browser)
        try:
            horses = await client.search_horses("5432", today=TODAY)
        finally:
            await client.close()

        assert len(horses) == 2
        browser.assert_awaited_once()
        assert "QueryParameter_UzerineKosanSahipId=5432" in browser.await_args.args[0]

    async def test_challenge_page_falls_back_to_browser(self):
        browser = AsyncMock(return_value=_horse_page(_horse_rows(1, 1), total=1, shown=1))
        client = _client(
            lambda request: httpx.Response(200, text="<div class='challenge-platform'></div>"),
            page_fetcher=browser,
        )
        try:
            horses = await client.search_horses("5432", today=TODAY)
        finally:
            await client.close()
        assert len(horses) == 1
        browser.assert_awaited_once()

    async def test_no_results_page_returns_empty_without_browser(self):
        browser = AsyncMock()
        client = _client(
            lambda request: httpx.Response(200, text="<table><tr><td>Kayıt bulunamadı</td></tr></table>"),
            page_fetcher=browser,
        )
        try:
            assert await client.search_horses("5432", today=TODAY) == []
        finally:
            await client.close()
        browser.assert_not_awaited()

    async def test_follows_datarows_pages_until_total(self):
        requested = []

        def handler(request):
            requested.append(request.url.path)
            if "DataRows" in request.url.path:
                return httpx.Response(200, text=_horse_rows(HORSE_PAGE_SIZE + 1, 10))
            return httpx.Response(
                200, text=_horse_page(_horse_rows(1, HORSE_PAGE_SIZE), total=60, shown=HORSE_PAGE_SIZE),
            )

        client = _client(handler)
        try:
            horses = await client.search_horses("5432", today=TODAY)
        finally:
            await client.close()

        assert len(horses) == 60
        assert len({h["external_ref"] for h in horses}) == 60
        assert sum("DataRows" in p for p in requested) == 1

    async def test_stops_when_page_repeats(self):
        def handler(request):
            if "DataRows" in request.url.path:
                return httpx.Response(200, text=_horse_rows(1, 5))
            return httpx.Response(200, text=_horse_page(_horse_rows(1, HORSE_PAGE_SIZE), total=999, shown=50))

        client = _client(handler)
        try:
            horses = await client.search_horses("5432", today=TODAY)
        finally:
            await client.close()
        assert len(horses) == HORSE_PAGE_SIZE


# ── Races and gallops ──


@pytest.mark.asyncio
class TestBrowserFetches:
    async def test_owner_races_parsed(self):
        browser = AsyncMock(return_value=RACES_HTML)
        client = _client(page_fetcher=browser)
        rows = await client.fetch_owner_races("5432")
        assert rows[0]["horse_name"] == "KARAYEL"
        assert rows[0]["position"] == 2
        assert "Kosmaz" not in browser.await_args.args[0]

    async def test_entries_url_includes_non_runners(self):
        browser = AsyncMock(return_value=RACES_HTML)
        client = _client(page_fetcher=browser)
        await client.fetch_owner_races("5432", include_entries=True)
        assert "QueryParameter_Kosmaz=on" in browser.await_args.args[0]

    async def test_challenge_page_raises(self):
        client = _client(page_fetcher=AsyncMock(return_value="<title>Just a moment...</title>"))
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_owner_races("5432")

    async def test_gallops_url(self):
        browser = AsyncMock(return_value="<p>Kayıt bulunamadı</p>")
        client = _client(page_fetcher=browser)
        assert await client.fetch_horse_gallops("90001", "KARAYEL") == []
        assert browser.await_args.args[0].endswith("IdmanIstatistikleri?QueryParameter_AtId=90001")

    async def test_slow_fetch_bounded(self):
        async def slow(url, wait_selector=None):
            await asyncio.sleep(1)
            return RACES_HTML

        client = _client(page_fetcher=slow, fetch_timeout=0.01)
        with pytest.raises(UpstreamTimeout):
            await client.fetch_owner_races("5432")


# ── Horse detail ──

DETAIL_HTML = """
<span class="key">Baba</span><span class="value"><a>HEADER SIRE</a></span>
<span class="key">Anne</span><span class="value"><a>HEADER DAM / X</a></span>
<p>Kazanç 832.550,50 t</p>
<table>
  <tr><td>TOPLAM</td><td>12</td><td>3</td><td>2</td><td>1</td><td>0</td><td>1</td><td>757.300 t</td></tr>
</table>
"""

PEDIGREE_HTML = """
<table id="tblPedigri"><tbody>
  <tr><td>KARAYEL</td><td><a>DAI JIN</a></td><td><a>SUNDAY SILENCE</a></td></tr>
  <tr><td></td><td><a>YILDIZ KIZ</a></td><td><a>WISHING WELL</a></td></tr>
</tbody></table>
"""


def _detail_fetcher(pedigree=PEDIGREE_HTML):
    async def fetch(url, wait_selector=None):
        if "Pedigri" in url:
            if isinstance(pedigree, Exception):
                raise pedigree
            return pedigree
        return DETAIL_HTML

    return AsyncMock(side_effect=fetch)


@pytest.mark.asyncio
class TestHorseDetail:
    async def test_detail_merged_with_pedigree(self):
        browser = _detail_fetcher()
        client = _client(page_fetcher=browser)
        detail = await client.fetch_horse_detail("90001")

        assert detail["total_earnings"] == "832550.50"
        assert detail["stats"]["total"]["races"] == 12
        assert detail["pedigree"]["sire"] == "DAI JIN"
        assert detail["pedigree"]["dam"] == "YILDIZ KIZ"
        assert detail["pedigree"]["sire_sire"] == "SUNDAY SILENCE"
        assert "sire" not in detail

        urls = [call.args[0] for call in browser.await_args_list]
        assert urls[0].endswith("AtKosuBilgileri?1=1&QueryParameter_AtId=90001")
        assert urls[1].endswith("Pedigri/Pedigri?Atkodu=90001")

    async def test_pedigree_failure_falls_back_to_header_parents(self):
        client = _client(page_fetcher=_detail_fetcher(UpstreamUnavailable("blocked")))
        detail = await client.fetch_horse_detail("90001")
        assert detail["pedigree"]["sire"] == "HEADER SIRE"
        assert detail["pedigree"]["dam"] == "HEADER DAM"
        assert detail["pedigree"]["sire_sire"] is None

    async def test_blocked_pedigree_page_ignored(self):
        client = _client(page_fetcher=_detail_fetcher("<title>Just a moment...</title>"))
        detail = await client.fetch_horse_detail("90001")
        assert detail["pedigree"]["sire"] == "HEADER SIRE"

    async def test_blocked_detail_page_raises(self):
        client = _client(page_fetcher=AsyncMock(return_value="<title>Just a moment...</title>"))
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_horse_detail("90001")

    async def test_slow_detail_bounded(self):
        async def slow(url, wait_selector=None):
            await asyncio.sleep(1)
            return DETAIL_HTML

        client = _client(page_fetcher=slow, fetch_timeout=0.01)
        with pytest.raises(UpstreamTimeout):
            await client.fetch_horse_detail("90001")
