"""Pure filters over normalized records."""

from datetime import date, timedelta
from typing import Optional, Sequence

from stablemate.config import ist_today
from stablemate.sync.normalizer import GallopSession, RaceResult, Registration


def filter_past_races(records: Sequence[RaceResult], today: Optional[date] = None) -> list[RaceResult]:
    """Races dated strictly before today, in input order."""
    today = today or ist_today()
    return [r for r in records if r.date < today]


def filter_recent_races(
    records: Sequence[RaceResult], limit: int = 10, today: Optional[date] = None,
) -> list[RaceResult]:
    """The ``limit`` most recent past races, newest first."""
    past = filter_past_races(records, today)
    past.sort(key=lambda r: r.date, reverse=True)
    return past[:max(limit, 0)]


def filter_registrations_and_declarations(
    records: Sequence[Registration], today: Optional[date] = None,
) -> list[Registration]:
    """Upcoming, non-cancelled entries, soonest first."""
    today = today or ist_today()
    upcoming = [r for r in records if not r.cancelled and r.date >= today]
    upcoming.sort(key=lambda r: r.date)
    return upcoming


def filter_gallops_by_days(
    records: Sequence[GallopSession], days: int = 7, today: Optional[date] = None,
) -> list[GallopSession]:
    """Gallops from the last ``days`` days, newest first."""
    today = today or ist_today()
    cutoff = today - timedelta(days=days)
    recent = [g for g in records if g.date >= cutoff]
    recent.sort(key=lambda g: g.date, reverse=True)
    return recent
