"""Normalize raw TJK rows into typed, deduplicated records.

The normalizer never raises on bad rows: rows whose date is not a real
calendar date (or that lack a horse name) are dropped and counted. A
non-zero drop count is logged at WARNING since it usually means the TJK
markup changed.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union

from stablemate.models.cache import KIND_GALLOPS, KIND_RACES, KIND_REGISTRATIONS

logger = logging.getLogger(__name__)

TJK_DATE_RE = re.compile(r"^\s*(\d{2})\.(\d{2})\.(\d{4})\s*$")

REG_KAYIT = "KAYIT"
REG_DEKLARE = "DEKLARE"

GALLOP_STATUS_LABELS = {
    "R": "Rahat",
    "ÇR": "Çok R.",
    "Ç": "Çalışarak",
    "HÇ": "Hafif Ç.",
    "HR": "Hafif R.",
}


def parse_tjk_date(value: Any) -> Optional[date]:
    """Parse a TJK ``DD.MM.YYYY`` date. Returns None for anything invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    m = TJK_DATE_RE.match(value)
    if not m:
        return None
    day, month, year = (int(g) for g in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def format_tjk_date(d: date) -> str:
    return d.strftime("%d.%m.%Y")


def format_gallop_status(code: Optional[str]) -> str:
    """Human label for a gallop status code (R, ÇR, Ç, HÇ, HR); unknown codes pass through."""
    if not code:
        return ""
    return GALLOP_STATUS_LABELS.get(code.strip().upper(), code)


def _str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def _int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    m = re.match(r"\s*(\d+)", str(value))
    return int(m.group(1)) if m else None


def _position(value: Any) -> Optional[int]:
    if isinstance(value, str) and ("." in value or ":" in value):
        return None
    n = _int(value)
    return n if n is not None and 1 <= n <= 20 else None


def _prize(value: Any) -> Optional[str]:
    text = _str(value)
    if not text:
        return None
    digits = text.replace(".", "").split(",")[0]
    if not digits.isdigit() or int(digits) == 0:
        return None
    return str(int(digits))


# ── Records ──


@dataclass(frozen=True)
class RaceResult:
    horse_name: str
    date: date
    city: Optional[str] = None
    distance: Optional[int] = None
    surface: Optional[str] = None
    position: Optional[int] = None
    race_type: Optional[str] = None
    prize_money: Optional[str] = None
    jockey_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "date": format_tjk_date(self.date),
            "horseName": self.horse_name,
            "city": self.city,
            "distance": self.distance,
            "surface": self.surface,
            "position": self.position,
            "raceType": self.race_type,
            "prizeMoney": self.prize_money,
            "jockeyName": self.jockey_name,
        }


@dataclass(frozen=True)
class Registration:
    horse_name: str
    date: date
    status: str = REG_KAYIT
    cancelled: bool = False
    city: Optional[str] = None
    distance: Optional[int] = None
    surface: Optional[str] = None
    race_type: Optional[str] = None
    jockey_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "date": format_tjk_date(self.date),
            "horseName": self.horse_name,
            "status": self.status,
            "cancelled": self.cancelled,
            "city": self.city,
            "distance": self.distance,
            "surface": self.surface,
            "raceType": self.race_type,
            "jockeyName": self.jockey_name,
        }


@dataclass(frozen=True)
class GallopSession:
    horse_name: str
    date: date
    horse_id: Optional[str] = None
    # (metres, "m.ss.hh") pairs sorted by distance, kept as a tuple so records stay hashable
    distances: tuple[tuple[int, str], ...] = field(default_factory=tuple)
    status: Optional[str] = None
    racecourse: Optional[str] = None
    surface: Optional[str] = None
    jockey_name: Optional[str] = None

    @property
    def distance_map(self) -> dict[int, str]:
        return dict(self.distances)

    def to_dict(self) -> dict:
        return {
            "date": format_tjk_date(self.date),
            "horseName": self.horse_name,
            "horseId": self.horse_id,
            "distances": {str(m): t for m, t in self.distances},
            "status": self.status,
            "racecourse": self.racecourse,
            "surface": self.surface,
            "jockeyName": self.jockey_name,
        }


NormalizedRecord = Union[RaceResult, Registration, GallopSession]


@dataclass
class NormalizeResult:
    records: list = field(default_factory=list)
    dropped: int = 0


def _get(row: dict, *keys: str) -> Any:
    """First present key; rows come snake_case from the parsers and camelCase from the cache."""
    for key in keys:
        if key in row:
            return row[key]
    return None


def _dedupe(records: Iterable[NormalizedRecord]) -> list:
    return list(dict.fromkeys(records))


def _finish(kind: str, records: list, dropped: int) -> NormalizeResult:
    unique = _dedupe(records)
    if dropped:
        logger.warning(f"Normalizer dropped {dropped} malformed {kind} rows")
    if len(unique) != len(records):
        logger.debug(f"Normalizer removed {len(records) - len(unique)} duplicate {kind} rows")
    return NormalizeResult(records=unique, dropped=dropped)


def _base(row: Any) -> Optional[tuple[str, date]]:
    if not isinstance(row, dict):
        return None
    horse_name = _str(_get(row, "horse_name", "horseName"))
    d = parse_tjk_date(_get(row, "date", "raceDate"))
    if not horse_name or d is None:
        return None
    return horse_name, d


def normalize_races(raw: Iterable[Any]) -> NormalizeResult:
    records, dropped = [], 0
    for row in raw:
        base = _base(row)
        if base is None:
            dropped += 1
            continue
        records.append(RaceResult(
            horse_name=base[0],
            date=base[1],
            city=_str(_get(row, "city")),
            distance=_int(_get(row, "distance")),
            surface=_str(_get(row, "surface")),
            position=_position(_get(row, "position")),
            race_type=_str(_get(row, "race_type", "raceType")),
            prize_money=_prize(_get(row, "prize_money", "prizeMoney")),
            jockey_name=_str(_get(row, "jockey_name", "jockeyName")),
        ))
    return _finish(KIND_RACES, records, dropped)


def classify_registration(raw_status: Optional[str]) -> Optional[tuple[str, bool]]:
    """Map a TJK status ("Kayıt", "Deklare", "... Koşmaz") to (KAYIT|DEKLARE, cancelled)."""
    text = _str(raw_status)
    if not text:
        return None
    if text.upper() in (REG_KAYIT, REG_DEKLARE):
        # Already normalized
        return text.upper(), False
    status = REG_DEKLARE if text.startswith("Deklare") else REG_KAYIT
    return status, "Koşmaz" in text


def normalize_registrations(raw: Iterable[Any]) -> NormalizeResult:
    """Keep rows carrying a registration status; rows without one are plain results and skipped."""
    records, dropped = [], 0
    for row in raw:
        base = _base(row)
        if base is None:
            dropped += 1
            continue
        classified = classify_registration(_get(row, "registration_status", "registrationStatus", "status"))
        if classified is None:
            continue
        status, cancelled = classified
        if row.get("cancelled") is True:
            cancelled = True
        records.append(Registration(
            horse_name=base[0],
            date=base[1],
            status=status,
            cancelled=cancelled,
            city=_str(_get(row, "city")),
            distance=_int(_get(row, "distance")),
            surface=_str(_get(row, "surface")),
            race_type=_str(_get(row, "race_type", "raceType")),
            jockey_name=_str(_get(row, "jockey_name", "jockeyName")),
        ))
    return _finish(KIND_REGISTRATIONS, records, dropped)


def _distances(value: Any) -> tuple[tuple[int, str], ...]:
    if not isinstance(value, dict):
        return ()
    pairs = []
    for metres, t in value.items():
        m, text = _int(metres), _str(t)
        if m is not None and text:
            pairs.append((m, text))
    return tuple(sorted(pairs))


def normalize_gallops(raw: Iterable[Any]) -> NormalizeResult:
    records, dropped = [], 0
    for row in raw:
        base = _base(row)
        distances = _distances(_get(row, "distances")) if base else ()
        if base is None or not distances:
            dropped += 1
            continue
        records.append(GallopSession(
            horse_name=base[0],
            date=base[1],
            horse_id=_str(_get(row, "horse_id", "horseId")),
            distances=distances,
            status=_str(_get(row, "status")),
            racecourse=_str(_get(row, "racecourse")),
            surface=_str(_get(row, "surface")),
            jockey_name=_str(_get(row, "jockey_name", "jockeyName")),
        ))
    return _finish(KIND_GALLOPS, records, dropped)


_NORMALIZERS = {
    KIND_RACES: normalize_races,
    KIND_REGISTRATIONS: normalize_registrations,
    KIND_GALLOPS: normalize_gallops,
}


def normalize(kind: str, raw: Iterable[Any]) -> NormalizeResult:
    """Dispatch to the normalizer for a resource kind."""
    try:
        normalizer = _NORMALIZERS[kind]
    except KeyError:
        raise ValueError(f"Unknown resource kind: {kind}")
    return normalizer(list(raw))


def load_records(kind: str, stored: Iterable[dict]) -> list:
    """Rebuild typed records from their cached (serialized) form."""
    if kind not in _NORMALIZERS:
        raise ValueError(f"Unknown resource kind: {kind}")
    return _NORMALIZERS[kind](list(stored)).records
