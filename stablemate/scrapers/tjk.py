"""TJK (Türkiye Jokey Kulübü) client: owner search, horse listing, races, gallops and horse detail."""

import logging
import time
from datetime import date
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

from fastapi import Request

from stablemate.config import ist_today, settings
from stablemate.scrapers.base import BaseScraper, UpstreamUnavailable
from stablemate.scrapers.parsers import (
    is_challenge_page,
    is_no_results_page,
    parse_gallops,
    parse_horse_detail,
    parse_horse_list,
    parse_owner_races,
    parse_owner_search,
    parse_pagination,
    parse_pedigree,
)
from stablemate.scrapers.playwright_base import fetch_page_html

logger = logging.getLogger(__name__)

HORSE_PAGE_SIZE = 50
HORSE_MAX_PAGES = 20

PageFetcher = Callable[..., Awaitable[str]]


class TJKClient(BaseScraper):
    """Fetches raw TJK data over plain HTTP, or a headless browser where the site blocks bots.

    One instance per process; every public call is bounded by ``fetch_timeout``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        fetch_timeout: Optional[float] = None,
        page_fetcher: Optional[PageFetcher] = None,
    ):
        super().__init__(timeout=timeout or settings.http_timeout)
        self.base_url = (base_url or settings.tjk_base_url).rstrip("/")
        self.fetch_timeout = fetch_timeout or settings.fetch_timeout
        self._page_fetcher = page_fetcher or fetch_page_html

    # ── URLs ──

    def owner_search_url(self, query: str) -> str:
        ts = int(time.time() * 1000)
        return (
            f"{self.base_url}/TR/YarisSever/Query/ParameterQuery?parameterName=UzerineKosanSahipId"
            f"&filter={quote(query.upper())}&page=1&parentParameterName=&_={ts}"
        )

    def horse_list_url(self, owner_ref: str) -> str:
        return (
            f"{self.base_url}/TR/YarisSever/Query/Data/Atlar?QueryParameter_AtIsmi=&QueryParameter_IrkId=-1"
            f"&QueryParameter_CinsiyetId=-1&QueryParameter_Yas=&QueryParameter_BabaId=&QueryParameter_AnneId="
            f"&QueryParameter_UzerineKosanSahipId={owner_ref}&QueryParameter_YetistiricAdi="
            f"&QueryParameter_AntronorId=&QueryParameter_UlkeId=-1&QueryParameter_OLDUFLG=0"
            f"&Era=today&Sort=&X-Requested-With=XMLHttpRequest"
        )

    def horse_rows_url(self, owner_ref: str, page_number: int) -> str:
        return (
            f"{self.base_url}/TR/YarisSever/Query/DataRows/Atlar?QueryParameter_UzerineKosanSahipId={owner_ref}"
            f"&QueryParameter_OLDUFLG=0&PageNumber={page_number}&Sort=AtIsmi"
        )

    def owner_races_url(self, owner_ref: str, include_entries: bool = False) -> str:
        url = (
            f"{self.base_url}/TR/YarisSever/Query/ConnectedPage/AtKosuBilgileri?QueryParameter_SahipId={owner_ref}"
            f"&QueryParameter_SehirId=-1&QueryParameter_YIL=-1&QueryParameter_PistKodu=-1"
            f"&QueryParameter_MesafeStart=-1&QueryParameter_MesafeEnd=-1"
        )
        if include_entries:
            url += "&QueryParameter_Kosmaz=on"
        return url

    def gallops_url(self, horse_ref: str) -> str:
        return f"{self.base_url}/TR/YarisSever/Query/Page/IdmanIstatistikleri?QueryParameter_AtId={horse_ref}"

    def horse_detail_url(self, horse_ref: str) -> str:
        return f"{self.base_url}/TR/YarisSever/Query/ConnectedPage/AtKosuBilgileri?1=1&QueryParameter_AtId={horse_ref}"

    def pedigree_url(self, horse_ref: str) -> str:
        return f"{self.base_url}/TR/YarisSever/Query/Pedigri/Pedigri?Atkodu={horse_ref}"

    # ── Owner search ──

    async def search_owners(self, query: str) -> list[dict]:
        """Search TJK owners by name. Returns [{label, officialName, externalRef}]."""
        return await self.bounded(self._search_owners(query), self.fetch_timeout, "TJK owner search")

    async def _search_owners(self, query: str) -> list[dict]:
        response = await self.fetch(
            self.owner_search_url(query),
            headers={
                "Accept": "application/json, text/javascript, */*; q=0.01",
                "X-Requested-With": "XMLHttpRequest",
                "Referer": f"{self.base_url}/TR/YarisSever/Query/Page/Atlar",
            },
        )
        try:
            payload = response.json()
        except ValueError as e:
            # HTML instead of JSON means the anti-bot layer answered
            raise UpstreamUnavailable(f"TJK owner search returned non-JSON: {e}")
        results = parse_owner_search(payload)
        logger.info(f"TJK owner search '{query}': {len(results)} results")
        return results

    # ── Horse listing ──

    async def search_horses(self, owner_ref: str, today: Optional[date] = None) -> list[dict]:
        """List an owner's living horses, following DataRows pagination."""
        return await self.bounded(
            self._search_horses(owner_ref, today or ist_today()), self.fetch_timeout, "TJK horse search",
        )

    async def _http_html(self, url: str) -> str:
        response = await self.fetch(url, headers={"X-Requested-With": "XMLHttpRequest"})
        return response.text

    async def _browser_html(self, url: str) -> str:
        return await self._page_fetcher(url, wait_selector='a[href*="QueryParameter_AtId"], tbody tr')

    async def _search_horses(self, owner_ref: str, today: date) -> list[dict]:
        url = self.horse_list_url(owner_ref)
        get_html: Callable[[str], Awaitable[str]] = self._http_html
        html: Optional[str] = None

        try:
            html = await self._http_html(url)
        except UpstreamUnavailable as e:
            logger.info(f"Plain HTTP horse listing failed ({e}), falling back to browser")

        horses = parse_horse_list(html, today) if html else []
        if html is None or is_challenge_page(html) or (not horses and not is_no_results_page(html)):
            logger.info(f"Horse listing for owner {owner_ref} blocked or empty, using browser")
            get_html = self._browser_html
            html = await get_html(url)
            horses = parse_horse_list(html, today)

        total, shown = parse_pagination(html)
        logger.info(f"Owner {owner_ref} initial horse page: {len(horses)} horses (total={total}, shown={shown})")
        if total is not None and len(horses) >= total:
            return horses
        if len(horses) < HORSE_PAGE_SIZE:
            return horses

        seen = {h["external_ref"] for h in horses}
        # DataRows PageNumber=1 is the second page of results
        for page_number in range(1, HORSE_MAX_PAGES):
            page_html = await get_html(self.horse_rows_url(owner_ref, page_number))
            page_horses = [h for h in parse_horse_list(page_html, today) if h["external_ref"] not in seen]
            if not page_horses:
                break
            horses.extend(page_horses)
            seen.update(h["external_ref"] for h in page_horses)
            if total is not None and len(horses) >= total:
                break
            if len(page_horses) < HORSE_PAGE_SIZE:
                break
        else:
            logger.warning(f"Owner {owner_ref} horse listing hit the {HORSE_MAX_PAGES} page limit")

        logger.info(f"Owner {owner_ref}: {len(horses)} horses fetched")
        return horses

    # ── Races and gallops (browser only) ──

    async def fetch_owner_races(self, owner_ref: str, include_entries: bool = False) -> list[dict[str, Any]]:
        """Raw rows from the owner's race table; entries adds upcoming registrations."""
        return await self.bounded(
            self._fetch_owner_races(owner_ref, include_entries), self.fetch_timeout, "TJK owner races",
        )

    async def _fetch_owner_races(self, owner_ref: str, include_entries: bool) -> list[dict[str, Any]]:
        html = await self._page_fetcher(self.owner_races_url(owner_ref, include_entries), wait_selector="table")
        if is_challenge_page(html):
            raise UpstreamUnavailable(f"TJK blocked owner races page for {owner_ref}")
        return parse_owner_races(html)

    async def fetch_horse_gallops(self, horse_ref: str, horse_name: str) -> list[dict[str, Any]]:
        """Raw gallop rows for one horse."""
        return await self.bounded(
            self._fetch_horse_gallops(horse_ref, horse_name), self.fetch_timeout, "TJK gallops",
        )

    async def _fetch_horse_gallops(self, horse_ref: str, horse_name: str) -> list[dict[str, Any]]:
        html = await self._page_fetcher(self.gallops_url(horse_ref), wait_selector="table")
        if is_challenge_page(html):
            raise UpstreamUnavailable(f"TJK blocked gallops page for horse {horse_ref}")
        return parse_gallops(html, horse_ref, horse_name)

    # ── Horse detail ──

    async def fetch_horse_detail(self, horse_ref: str) -> dict[str, Any]:
        """Detail page (stats, earnings, race history) merged with the pedigree page."""
        return await self.bounded(self._fetch_horse_detail(horse_ref), self.fetch_timeout, "TJK horse detail")

    async def _fetch_horse_detail(self, horse_ref: str) -> dict[str, Any]:
        html = await self._page_fetcher(self.horse_detail_url(horse_ref), wait_selector="table")
        if is_challenge_page(html):
            raise UpstreamUnavailable(f"TJK blocked detail page for horse {horse_ref}")
        detail = parse_horse_detail(html)

        pedigree_html = ""
        try:
            pedigree_html = await self._page_fetcher(self.pedigree_url(horse_ref), wait_selector="#tblPedigri")
        except UpstreamUnavailable as e:
            logger.warning(f"Pedigree fetch failed for horse {horse_ref}: {e}")
        if is_challenge_page(pedigree_html):
            logger.warning(f"TJK blocked pedigree page for horse {horse_ref}")
            pedigree_html = ""

        pedigree = parse_pedigree(pedigree_html)
        # The pedigree table is authoritative; the detail header is the fallback
        sire, dam = detail.pop("sire"), detail.pop("dam")
        pedigree["sire"] = pedigree["sire"] or sire
        pedigree["dam"] = pedigree["dam"] or dam
        detail["pedigree"] = pedigree
        logger.info(f"Horse {horse_ref} detail: {len(detail['races'])} races, sire={pedigree['sire']}")
        return detail


def get_tjk_client(request: Request) -> TJKClient:
    """FastAPI dependency returning the process's TJK client."""
    client: Optional[TJKClient] = getattr(request.app.state, "tjk_client", None)
    if client is None:
        raise RuntimeError("TJK client not initialised (app lifespan not run)")
    return client
