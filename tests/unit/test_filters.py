"""Tests for record filters and dashboard view shapes."""

from datetime import date

from stablemate.sync.filters import (
    filter_gallops_by_days,
    filter_past_races,
    filter_recent_races,
    filter_registrations_and_declarations,
)
from stablemate.sync.normalizer import GallopSession, RaceResult, Registration
from stablemate.sync.views import entries_view, gallops_view, recent_races_view, tjk_entries_url

TODAY = date(2024, 3, 10)


def _race(name, d, **kw):
    return RaceResult(horse_name=name, date=d, **kw)


def _reg(name, d, status="KAYIT", cancelled=False):
    return Registration(horse_name=name, date=d, status=status, cancelled=cancelled)


def _gallop(name, d, status="R"):
    return GallopSession(horse_name=name, date=d, horse_id="1", distances=((400, "0.26.00"),), status=status)


# ── Races ──


class TestRaceFilters:
    def test_past_races_exclude_today_and_future(self):
        races = [
            _race("A", date(2024, 3, 9)),
            _race("B", TODAY),
            _race("C", date(2024, 3, 15)),
            _race("D", date(2024, 1, 1)),
        ]
        assert [r.horse_name for r in filter_past_races(races, TODAY)] == ["A", "D"]

    def test_recent_races_sorted_desc_and_limited(self):
        races = [_race(str(i), date(2024, 2, i)) for i in range(1, 8)]
        recent = filter_recent_races(races, limit=3, today=TODAY)
        assert [r.date.day for r in recent] == [7, 6, 5]

    def test_recent_races_skip_future(self):
        races = [_race("past", date(2024, 3, 1)), _race("next", date(2024, 3, 20))]
        assert [r.horse_name for r in filter_recent_races(races, 10, TODAY)] == ["past"]


# ── Entries ──


class TestRegistrationFilter:
    def test_upcoming_not_cancelled_sorted_asc(self):
        regs = [
            _reg("late", date(2024, 3, 20)),
            _reg("today", TODAY),
            _reg("gone", date(2024, 3, 12), cancelled=True),
            _reg("past", date(2024, 3, 1)),
            _reg("soon", date(2024, 3, 11), status="DEKLARE"),
        ]
        assert [r.horse_name for r in filter_registrations_and_declarations(regs, TODAY)] == ["today", "soon", "late"]


# ── Gallops ──


class TestGallopFilter:
    def test_window_inclusive_and_desc(self):
        gallops = [
            _gallop("edge", date(2024, 3, 3)),
            _gallop("old", date(2024, 3, 2)),
            _gallop("new", date(2024, 3, 9)),
        ]
        assert [g.horse_name for g in filter_gallops_by_days(gallops, 7, TODAY)] == ["new", "edge"]


# ── Views ──


class TestViews:
    def test_recent_races_view_shape(self):
        races = [_race("KARAYEL", date(2024, 3, 5), city="İstanbul", position=2, prize_money="85000")]
        view = recent_races_view(races, 10, TODAY)
        assert view == [{
            "date": "05.03.2024",
            "horseName": "KARAYEL",
            "city": "İstanbul",
            "distance": None,
            "surface": None,
            "position": 2,
            "raceType": None,
            "prizeMoney": "85000",
            "jockeyName": None,
        }]

    def test_entries_view_links_tjk_page(self):
        regs = [_reg("KARAYEL", date(2024, 3, 12), status="DEKLARE"), _reg("TAY", date(2024, 3, 13))]
        view = entries_view(regs, TODAY, horse_refs={"KARAYEL": "90001"})
        assert view[0]["id"] == "reg-0"
        assert view[0]["type"] == "DEKLARE"
        assert view[0]["raceDate"] == "12.03.2024"
        assert view[0]["tjkUrl"] == tjk_entries_url("90001")
        assert "QueryParameter_AtId=90001" in view[0]["tjkUrl"]
        assert view[1]["tjkUrl"] is None

    def test_gallops_view_formats_status(self):
        view = gallops_view([_gallop("KARAYEL", date(2024, 3, 8), status="HÇ")], 14, TODAY)
        assert view[0]["statusLabel"] == "Hafif Ç."
        assert view[0]["distances"] == {"400": "0.26.00"}
