"""Tests for scheduled jobs and their registration."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from stablemate.models.database import TARGET_LOCAL, DatabaseRouter, init_db
from stablemate.models.owner import OwnerProfile
from stablemate.rate_limit import RateLimiters
from stablemate.scheduler.jobs import nightly_refresh, sweep_rate_limiters
from stablemate.scheduler.manager import JOB_NIGHTLY_REFRESH, JOB_RATE_LIMIT_SWEEP, SchedulerManager


@pytest.fixture
async def db_router(tmp_path):
    router = DatabaseRouter({TARGET_LOCAL: f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"})
    await init_db(router)
    async with router.session() as db:
        db.add_all([
            OwnerProfile(id="owner-1", user_id="user-1", name="Ayşe Yılmaz", official_ref="5432"),
            OwnerProfile(id="owner-2", user_id="user-2", name="Mehmet Kaya", official_ref="6543"),
            OwnerProfile(id="owner-3", user_id="user-3", name="Yeni Sahip", official_ref=None),
        ])
        await db.commit()
    yield router
    await router.clear()


# ── Nightly refresh ──


@pytest.mark.asyncio
class TestNightlyRefresh:
    async def test_refreshes_owners_with_tjk_id(self, db_router):
        sync = MagicMock()
        sync.refresh_owner = AsyncMock(return_value={"races": 3, "registrations": 1, "gallops": 2})

        result = await nightly_refresh(db_router, sync)

        assert result == {"owners": 2, "failed_kinds": 0, "failed_owners": 0}
        refreshed = sorted(call.args[1].id for call in sync.refresh_owner.await_args_list)
        assert refreshed == ["owner-1", "owner-2"]

    async def test_failed_kinds_counted_and_run_continues(self, db_router):
        sync = MagicMock()
        sync.refresh_owner = AsyncMock(side_effect=[
            {"races": None, "registrations": None, "gallops": 2},
            {"races": 1, "registrations": 0, "gallops": None},
        ])
        result = await nightly_refresh(db_router, sync)
        assert result == {"owners": 2, "failed_kinds": 3, "failed_owners": 0}

    async def test_owner_crash_rolled_back_and_next_owner_refreshed(self, db_router):
        sync = MagicMock()
        sync.refresh_owner = AsyncMock(side_effect=[
            ValueError("unexpected markup"),
            {"races": 2, "registrations": 0, "gallops": 1},
        ])

        result = await nightly_refresh(db_router, sync)

        assert result == {"owners": 1, "failed_kinds": 0, "failed_owners": 1}
        refreshed = [call.args[1].id for call in sync.refresh_owner.await_args_list]
        assert refreshed == ["owner-1", "owner-2"]


# ── Limiter sweep ──


class TestSweep:
    def test_idle_buckets_evicted(self, clock):
        limiters = RateLimiters(clock=clock)
        limiters.tjk.check("10.0.0.1")
        limiters.api.check("10.0.0.2")
        clock.advance(3601)
        limiters.api.check("10.0.0.3")

        assert sweep_rate_limiters(limiters) == 2
        assert len(limiters.tjk) == 0
        assert len(limiters.api) == 1


# ── Registration ──


class TestSetupSyncJobs:
    def test_both_jobs_registered(self):
        manager = SchedulerManager()
        manager.setup_sync_jobs(RateLimiters(), MagicMock(), MagicMock())

        assert {job.id for job in manager.get_jobs()} == {JOB_RATE_LIMIT_SWEEP, JOB_NIGHTLY_REFRESH}
        nightly = manager.get_job(JOB_NIGHTLY_REFRESH)
        assert "hour='2'" in str(nightly.trigger)
        assert not manager.running

    def test_unknown_trigger_rejected(self):
        with pytest.raises(ValueError):
            SchedulerManager().add_job("x", lambda: None, "date")
