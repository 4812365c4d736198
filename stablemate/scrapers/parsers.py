"""HTML/JSON parsers for TJK pages.

Each parser returns raw row dicts with string-ish values; type coercion
and validation happen later in the normalizer.
"""

import logging
import re
from datetime import date
from typing import Any, Optional
from urllib.parse import unquote_plus

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"\d{2}\.\d{2}\.\d{4}")
GALLOP_TIME_RE = re.compile(r"\d+\.\d+\.\d+")
DISTANCE_HEADER_RE = re.compile(r"^(\d+)m$")
HORSE_ID_RE = re.compile(r"QueryParameter_AtId=(\d+)")
SIRE_RE = re.compile(r"QueryParameter_BabaAdi=([^&]+)")
DAM_RE = re.compile(r"QueryParameter_AnneAdi=([^&]+)")
AGE_RE = re.compile(r"(\d+)\s*y", re.IGNORECASE)
BREED_RE = re.compile(r"(Arap|İngiliz|Yarımkan|Thoroughbred)", re.IGNORECASE)
TOTAL_RE = re.compile(r"Toplam\s+(\d+)\s+sonuçtan")
SHOWN_RE = re.compile(r"(\d+)\s+tanesi\s+gösteriliyor")

NO_RESULTS_MARKERS = ("Kayıt bulunamadı", "Sonuç bulunamadı")
CHALLENGE_MARKERS = ("cf-browser-verification", "challenge-platform", "Just a moment", "Access denied")

# Positional fallbacks when the race table header can't be matched
RACE_COLUMN_DEFAULTS = {
    "date": 0,
    "horse_name": 1,
    "city": 2,
    "distance": 3,
    "surface": 4,
    "position": 5,
    "race_type": 14,
    "prize_money": 15,
    "jockey_name": 8,
}

STATUS_CANCELLED_REGISTRATION = "Kayıt Koşmaz"
STATUS_CANCELLED_DECLARATION = "Deklare Koşmaz"
STATUS_REGISTERED = "Kayıt"
STATUS_DECLARED = "Deklare"


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _text(el: Optional[Tag]) -> str:
    """Text of a cell, preferring its link text like the site's own markup does."""
    if el is None:
        return ""
    link = el.find("a")
    raw = link.get_text() if link is not None and link.get_text().strip() else el.get_text()
    return " ".join(raw.split())


def _fold(text: str) -> str:
    """Lowercase without the combining dot that "İ".lower() leaves behind."""
    return text.lower().replace("\u0307", "")


def _header_cells(table: Tag) -> list[str]:
    header_row = table.find("thead")
    cells = header_row.find_all("th") if header_row else []
    if not cells:
        first_row = table.find("tr")
        cells = first_row.find_all(["th", "td"]) if first_row else []
    return [" ".join(c.get_text().split()) for c in cells]


def _body_rows(table: Tag) -> list[Tag]:
    tbody = table.find("tbody")
    rows = (tbody or table).find_all("tr")
    return [r for r in rows if r.find("td") is not None]


def is_challenge_page(html: str) -> bool:
    """Whether the response is an anti-bot interstitial rather than content."""
    return any(marker in html for marker in CHALLENGE_MARKERS)


def is_no_results_page(html: str) -> bool:
    return any(marker in html for marker in NO_RESULTS_MARKERS)


# ── Owner races / entries ──────────────────────────────────────────────────


def _find_race_table(soup: BeautifulSoup) -> Optional[Tag]:
    for table in soup.find_all("table"):
        headers = " ".join(_header_cells(table))
        if "Tarih" in headers and "At İsmi" in headers and "Şehir" in headers:
            return table
    return None


def _race_columns(headers: list[str]) -> dict[str, int]:
    columns: dict[str, int] = {}
    for i, header in enumerate(headers):
        h = _fold(header)
        if h == "tarih":
            columns.setdefault("date", i)
        elif h.startswith("at i"):
            columns.setdefault("horse_name", i)
        elif h == "şehir":
            columns.setdefault("city", i)
        elif h in ("msf", "mesafe"):
            columns.setdefault("distance", i)
        elif h == "pist":
            columns.setdefault("surface", i)
        elif header == "S":
            # "S" is the finish position; "Derece" is the race time
            columns.setdefault("position", i)
        elif h == "kcins":
            columns.setdefault("race_type", i)
        elif h == "ikramiye":
            columns.setdefault("prize_money", i)
        elif h == "jokey":
            columns.setdefault("jockey_name", i)
    for key, default in RACE_COLUMN_DEFAULTS.items():
        if key not in columns:
            logger.debug(f"Race column '{key}' not in header, using index {default}")
            columns[key] = default
    return columns


def _parse_position(text: str) -> Optional[int]:
    if not text or "." in text or ":" in text:
        return None
    try:
        value = int(text)
    except ValueError:
        return None
    return value if 1 <= value <= 20 else None


def _parse_distance(text: str) -> Optional[int]:
    match = re.match(r"\d+", text)
    return int(match.group()) if match else None


def _registration_status(jockey_text: str, row_text: str, has_jockey_col: bool) -> tuple[Optional[str], Optional[str]]:
    """Return (status, jockey_name) from the jockey cell of an owner race row."""
    if not has_jockey_col:
        if STATUS_CANCELLED_REGISTRATION in row_text:
            return STATUS_CANCELLED_REGISTRATION, None
        if STATUS_REGISTERED in row_text and "Koşmaz" not in row_text:
            return STATUS_REGISTERED, None
        return None, None

    if STATUS_CANCELLED_REGISTRATION in jockey_text:
        return STATUS_CANCELLED_REGISTRATION, None
    if STATUS_CANCELLED_DECLARATION in jockey_text:
        return STATUS_CANCELLED_DECLARATION, None
    if jockey_text == STATUS_REGISTERED:
        return STATUS_REGISTERED, None
    if jockey_text:
        return STATUS_DECLARED, jockey_text
    return None, None


def parse_owner_races(html: str) -> list[dict[str, Any]]:
    """Parse the owner race table (past results and, with entries on, upcoming ones)."""
    soup = _soup(html)
    table = _find_race_table(soup)
    if table is None:
        logger.warning("Owner race table not found on page")
        return []

    headers = _header_cells(table)
    cols = _race_columns(headers)
    has_jockey_col = any(_fold(h) == "jokey" for h in headers)

    rows: list[dict[str, Any]] = []
    for tr in _body_rows(table):
        cells = tr.find_all("td")

        def cell(key: str) -> str:
            idx = cols[key]
            return _text(cells[idx]) if idx < len(cells) else ""

        date_text = cell("date")
        if not DATE_RE.search(date_text):
            continue
        horse_name = cell("horse_name")
        if not horse_name:
            continue

        prize_text = cell("prize_money")
        status, jockey = _registration_status(
            cell("jockey_name"), " ".join(tr.get_text().split()), has_jockey_col,
        )
        rows.append({
            "date": DATE_RE.search(date_text).group(),
            "horse_name": horse_name,
            "city": cell("city"),
            "distance": _parse_distance(cell("distance")),
            "surface": cell("surface") or None,
            "position": _parse_position(cell("position")),
            "race_type": cell("race_type") or None,
            "prize_money": prize_text.replace(".", "") if prize_text and prize_text != "0" else None,
            "jockey_name": jockey,
            "registration_status": status,
        })

    logger.info(f"Parsed {len(rows)} owner race rows")
    return rows


# ── Gallops ────────────────────────────────────────────────────────────────


def _find_gallop_table(soup: BeautifulSoup) -> Optional[Tag]:
    for table in soup.find_all("table"):
        headers = " ".join(_header_cells(table))
        if "İ. Tarihi" in headers or ("1400m" in headers and "1200m" in headers):
            return table
    return None


def parse_gallops(html: str, horse_id: str, horse_name: str) -> list[dict[str, Any]]:
    """Parse a horse's training statistics table."""
    soup = _soup(html)
    table = _find_gallop_table(soup)
    if table is None:
        logger.info(f"No gallop table for horse {horse_id}")
        return []

    distance_cols: list[tuple[int, int]] = []
    cols: dict[str, int] = {}
    for i, header in enumerate(_header_cells(table)):
        h = _fold(header)
        m = DISTANCE_HEADER_RE.match(h)
        if m:
            distance_cols.append((int(m.group(1)), i))
        elif "tarih" in h:
            cols.setdefault("date", i)
        elif "durum" in h:
            cols.setdefault("status", i)
        elif "i. hip" in h or "hipodrom" in h:
            cols.setdefault("racecourse", i)
        elif "pist" in h:
            cols.setdefault("surface", i)
        elif "i. jokeyi" in h or "jokey" in h:
            cols.setdefault("jockey_name", i)

    rows: list[dict[str, Any]] = []
    for tr in _body_rows(table):
        cells = tr.find_all("td")
        if len(cells) < 5:
            continue

        def cell(key: str) -> str:
            idx = cols.get(key)
            return _text(cells[idx]) if idx is not None and idx < len(cells) else ""

        date_match = DATE_RE.search(cell("date"))
        if not date_match:
            continue

        distances: dict[int, str] = {}
        for metres, idx in distance_cols:
            if idx < len(cells):
                t = GALLOP_TIME_RE.search(_text(cells[idx]))
                if t:
                    distances[metres] = t.group()
        if not distances:
            continue

        rows.append({
            "date": date_match.group(),
            "horse_id": horse_id,
            "horse_name": horse_name,
            "distances": distances,
            "status": cell("status") or None,
            "racecourse": cell("racecourse") or None,
            "surface": cell("surface") or None,
            "jockey_name": cell("jockey_name") or None,
        })
    return rows


# ── Horse listing ──────────────────────────────────────────────────────────


def _origin(cell: Optional[Tag]) -> tuple[Optional[str], Optional[str]]:
    if cell is None:
        return None, None
    links = [a for a in cell.find_all("a") if "Orijin" in (a.get("href") or "")]
    if len(links) < 2:
        return None, None

    def name(link: Tag, pattern: re.Pattern) -> Optional[str]:
        m = pattern.search(link.get("href") or "")
        value = unquote_plus(m.group(1)) if m else link.get_text().strip()
        return value or None

    return name(links[0], SIRE_RE), name(links[1], DAM_RE)


def parse_horse_list(html: str, today: Optional[date] = None) -> list[dict[str, Any]]:
    """Parse a horse listing page (initial Data page or a DataRows fragment)."""
    year = (today or date.today()).year
    # DataRows fragments are bare <tr> elements
    soup = _soup(html if "<table" in html else f"<table><tbody>{html}</tbody></table>")

    horses: list[dict[str, Any]] = []
    seen: set[str] = set()
    for tr in soup.find_all("tr"):
        cells = tr.find_all("td")
        if len(cells) < 3:
            continue
        link = cells[0].find("a", href=HORSE_ID_RE)
        if link is None:
            continue
        ref = HORSE_ID_RE.search(link["href"]).group(1)
        if ref in seen:
            continue
        seen.add(ref)

        name = re.sub(r"\(.*?\)", "", link.get_text()).strip()
        if not name:
            continue
        breed_match = BREED_RE.search(_text(cells[1]))
        gender = _text(cells[2]) or None
        age_match = AGE_RE.search(_text(cells[3])) if len(cells) > 3 else None
        sire, dam = _origin(cells[4] if len(cells) > 4 else None)

        horses.append({
            "name": name,
            "external_ref": ref,
            "breed": breed_match.group(1) if breed_match else None,
            "gender": gender,
            "yob": year - int(age_match.group(1)) if age_match else None,
            "status": "MARE" if gender and "dişi" in gender.lower() else "STALLION",
            "sire": sire,
            "dam": dam,
        })
    return horses


def parse_pagination(html: str) -> tuple[Optional[int], Optional[int]]:
    """Return (total, shown) from the "Toplam N sonuçtan M tanesi gösteriliyor" line."""
    text = " ".join(_soup(html).get_text().split())
    total = TOTAL_RE.search(text)
    shown = SHOWN_RE.search(text)
    return (int(total.group(1)) if total else None, int(shown.group(1)) if shown else None)


# ── Owner search ───────────────────────────────────────────────────────────


def parse_owner_search(payload: Any) -> list[dict[str, Optional[str]]]:
    """Map the ParameterQuery JSON ({entities: [{id, text}]}) to owner results."""
    if not isinstance(payload, dict) or not isinstance(payload.get("entities"), list):
        logger.warning(f"Unexpected TJK owner search response: {str(payload)[:200]}")
        return []
    results = []
    for item in payload["entities"]:
        if not isinstance(item, dict) or not item.get("text"):
            continue
        results.append({
            "label": item["text"],
            "officialName": item["text"],
            "externalRef": str(item["id"]) if item.get("id") is not None else None,
        })
    return results


# ── Horse detail and pedigree ──────────────────────────────────────────────

HANDICAP_RE = re.compile(r"Handikap\s+P\.?\s*(\d+)")
MONEY_RES = {
    "prize_money": re.compile(r"İkramiye\s+([\d.,]+)\s*t"),
    "owner_premium": re.compile(r"At\s+Sahibi\s+Primi\s+([\d.,]+)\s*t"),
    "breeder_premium": re.compile(r"Yetiştiricilik\s+Primi\s+([\d.,]+)\s*t"),
    "total_earnings": re.compile(r"Kazanç\s+([\d.,]+)\s*t"),
}
JOCKEY_ID_RE = re.compile(r"JokeyId=(\d+)")
TRAINER_ID_RE = re.compile(r"AntrenorId=(\d+)")
RACE_NAME_RE = re.compile(r"^(\d+)\s*-\s*(.+)$")

STATS_LABELS = {"TOPLAM": "total", "Çim": "turf", "Kum": "dirt", "Sentetik": "synthetic"}
SURFACE_CODES = (("Ç", "Çim"), ("K", "Kum"), ("S", "Sentetik"))

# (row, column) of each ancestor's cell in #tblPedigri
PEDIGREE_CELLS = {
    "sire": (0, 1),
    "dam": (1, 1),
    "sire_sire": (0, 2),
    "sire_dam": (1, 2),
    "dam_sire": (2, 2),
    "dam_dam": (3, 2),
    "sire_sire_sire": (0, 3),
    "sire_sire_dam": (1, 3),
    "sire_dam_sire": (2, 3),
    "sire_dam_dam": (3, 3),
    "dam_sire_sire": (4, 3),
    "dam_sire_dam": (5, 3),
    "dam_dam_sire": (6, 3),
    "dam_dam_dam": (7, 3),
}


def _money(text: str) -> str:
    """TJK amount ("1.234.567,50") as a plain decimal string."""
    return text.replace(".", "").replace(",", ".")


def _count(text: str) -> int:
    match = re.search(r"\d+", text.replace(".", ""))
    return int(match.group()) if match else 0


def _link_ref(cell: Optional[Tag], pattern: re.Pattern) -> Optional[str]:
    link = cell.find("a", href=pattern) if cell is not None else None
    if link is None:
        return None
    return pattern.search(link["href"]).group(1)


def _surface_name(text: str) -> Optional[str]:
    for code, name in SURFACE_CODES:
        if code in text:
            return name
    return None


def _career_stats(soup: BeautifulSoup) -> dict[str, dict[str, Any]]:
    stats: dict[str, dict[str, Any]] = {}
    for tr in soup.find_all("tr"):
        cells = tr.find_all("td")
        if len(cells) < 7:
            continue
        key = STATS_LABELS.get(_text(cells[0]))
        if key is None or key in stats:
            continue
        counts = [_count(_text(c)) for c in cells[1:7]]
        earnings = re.search(r"[\d.,]+", _text(cells[7])) if len(cells) > 7 else None
        stats[key] = {
            "races": counts[0],
            "first": counts[1],
            "second": counts[2],
            "third": counts[3],
            "fourth": counts[4],
            "fifth": counts[5],
            "earnings": _money(earnings.group()) if earnings else None,
        }
    return stats


def _parents(soup: BeautifulSoup) -> tuple[Optional[str], Optional[str]]:
    """Sire and dam from the "Baba"/"Anne" key-value spans of the detail header."""
    found: dict[str, str] = {}
    for key in soup.select("span.key"):
        label = _text(key).rstrip(":").strip()
        if label not in ("Baba", "Anne") or label in found:
            continue
        value = key.find_next_sibling("span", class_="value")
        name = _text(value)
        if label == "Anne":
            # Dam is shown as "DAM / DAM'S SIRE"
            name = name.split("/")[0].strip()
        if name:
            found[label] = name
    return found.get("Baba"), found.get("Anne")


def _find_history_table(soup: BeautifulSoup) -> Optional[Tag]:
    for table in soup.find_all("table"):
        headers = " ".join(_header_cells(table))
        if "Tarih" in headers and "Şehir" in headers and "Derece" in headers:
            return table
    return None


def _history_columns(headers: list[str]) -> dict[str, int]:
    columns: dict[str, int] = {}
    for i, header in enumerate(headers):
        h = _fold(header)
        key = None
        if h == "tarih":
            key = "date"
        elif h == "şehir":
            key = "city"
        elif h in ("msf", "mesafe"):
            key = "distance"
        elif h == "pist":
            key = "surface"
        elif header == "S":
            key = "position"
        elif h == "derece":
            key = "finish_time"
        elif h.startswith("sıklet") or h == "sık":
            key = "weight"
        elif h == "jokey":
            key = "jockey"
        elif h in ("kcins", "k.cins"):
            key = "race_type"
        elif h.startswith("koşu"):
            key = "race"
        elif h.startswith("antrenör"):
            key = "trainer"
        elif h in ("hp", "handikap"):
            key = "handicap"
        elif h == "ikramiye":
            key = "prize_money"
        if key is not None:
            columns.setdefault(key, i)
    return columns


def _race_history(soup: BeautifulSoup) -> list[dict[str, Any]]:
    table = _find_history_table(soup)
    if table is None:
        return []
    cols = _history_columns(_header_cells(table))

    rows: list[dict[str, Any]] = []
    for tr in _body_rows(table):
        cells = tr.find_all("td")
        if len(cells) < 10:
            continue

        def cell(key: str) -> Optional[Tag]:
            idx = cols.get(key)
            return cells[idx] if idx is not None and idx < len(cells) else None

        date_match = DATE_RE.search(_text(cell("date")))
        if not date_match:
            continue

        surface_text = _text(cell("surface"))
        race_text = _text(cell("race"))
        race_match = RACE_NAME_RE.match(race_text)
        handicap = _text(cell("handicap"))
        prize = _text(cell("prize_money"))
        rows.append({
            "date": date_match.group(),
            "city": _text(cell("city")) or None,
            "distance": _parse_distance(_text(cell("distance"))),
            "surface": _surface_name(surface_text),
            "surface_type": surface_text or None,
            "position": _parse_position(_text(cell("position"))),
            "finish_time": _text(cell("finish_time")) or None,
            "weight": _text(cell("weight")) or None,
            "jockey_name": _text(cell("jockey")) or None,
            "jockey_ref": _link_ref(cell("jockey"), JOCKEY_ID_RE),
            "race_number": int(race_match.group(1)) if race_match else None,
            "race_name": race_match.group(2).strip() if race_match else (race_text or None),
            "race_type": _text(cell("race_type")) or None,
            "trainer_name": _text(cell("trainer")) or None,
            "trainer_ref": _link_ref(cell("trainer"), TRAINER_ID_RE),
            "handicap_points": int(handicap) if handicap.isdigit() else None,
            "prize_money": _money(prize) if prize and prize != "0" else None,
        })
    return rows


def parse_horse_detail(html: str) -> dict[str, Any]:
    """Parse a horse's race-info page.

    Returns the earnings summary (amounts as decimal strings), career stats
    per surface, sire and dam as shown in the header, and the race history
    rows newest first as the site lists them.
    """
    soup = _soup(html)
    body = " ".join(soup.get_text(" ").split())

    detail: dict[str, Any] = {}
    handicap = HANDICAP_RE.search(body)
    detail["handicap_points"] = int(handicap.group(1)) if handicap else None
    for key, pattern in MONEY_RES.items():
        match = pattern.search(body)
        detail[key] = _money(match.group(1)) if match else None

    detail["stats"] = _career_stats(soup)
    detail["sire"], detail["dam"] = _parents(soup)
    detail["races"] = _race_history(soup)
    logger.info(f"Parsed horse detail: {len(detail['races'])} races, stats for {sorted(detail['stats'])}")
    return detail


def parse_pedigree(html: str) -> dict[str, Optional[str]]:
    """Ancestor names from the #tblPedigri table, up to great-grandparents."""
    pedigree: dict[str, Optional[str]] = dict.fromkeys(PEDIGREE_CELLS)
    table = _soup(html).find("table", id="tblPedigri")
    if table is None:
        logger.info("No pedigree table on page")
        return pedigree

    rows = table.find_all("tr")
    for key, (row, col) in PEDIGREE_CELLS.items():
        if row >= len(rows):
            continue
        cells = rows[row].find_all("td")
        link = cells[col].find("a") if col < len(cells) else None
        if link is not None:
            pedigree[key] = " ".join(link.get_text().split()) or None
    return pedigree
