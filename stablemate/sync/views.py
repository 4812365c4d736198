"""Dashboard view shapes derived from normalized records."""

from datetime import date
from typing import Optional, Sequence

from stablemate.sync.filters import (
    filter_gallops_by_days,
    filter_recent_races,
    filter_registrations_and_declarations,
)
from stablemate.sync.normalizer import (
    GallopSession,
    RaceResult,
    Registration,
    format_gallop_status,
    format_tjk_date,
)

TJK_ENTRIES_URL = "https://www.tjk.org/TR/YarisSever/Info/Page/Kayitlar?QueryParameter_AtId={ref}"


def tjk_entries_url(horse_ref: Optional[str]) -> Optional[str]:
    if not horse_ref:
        return None
    return TJK_ENTRIES_URL.format(ref=horse_ref)


def recent_races_view(
    records: Sequence[RaceResult], limit: int = 10, today: Optional[date] = None,
) -> list[dict]:
    return [
        {
            "date": format_tjk_date(r.date),
            "horseName": r.horse_name,
            "city": r.city or "",
            "distance": r.distance,
            "surface": r.surface,
            "position": r.position,
            "raceType": r.race_type,
            "prizeMoney": r.prize_money,
            "jockeyName": r.jockey_name,
        }
        for r in filter_recent_races(records, limit, today)
    ]


def entries_view(
    records: Sequence[Registration],
    today: Optional[date] = None,
    horse_refs: Optional[dict[str, str]] = None,
) -> list[dict]:
    """Upcoming registrations/declarations; ``horse_refs`` maps horse name to TJK id for links."""
    horse_refs = horse_refs or {}
    return [
        {
            "id": f"reg-{i}",
            "horseName": r.horse_name,
            "raceDate": format_tjk_date(r.date),
            "city": r.city,
            "distance": r.distance,
            "surface": r.surface,
            "raceType": r.race_type,
            "type": r.status,
            "jockeyName": r.jockey_name,
            "tjkUrl": tjk_entries_url(horse_refs.get(r.horse_name)),
        }
        for i, r in enumerate(filter_registrations_and_declarations(records, today))
    ]


def gallops_view(
    records: Sequence[GallopSession], days: int = 7, today: Optional[date] = None,
) -> list[dict]:
    return [
        {
            "id": f"gallop-{i}",
            "horseId": g.horse_id,
            "horseName": g.horse_name,
            "date": format_tjk_date(g.date),
            "distances": {str(m): t for m, t in g.distances},
            "status": g.status,
            "statusLabel": format_gallop_status(g.status),
            "racecourse": g.racecourse,
            "surface": g.surface,
            "jockeyName": g.jockey_name,
        }
        for i, g in enumerate(filter_gallops_by_days(records, days, today))
    ]
