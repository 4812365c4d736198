"""Background job scheduling for Stablemate."""

from stablemate.scheduler.manager import SchedulerManager
from stablemate.scheduler.jobs import nightly_refresh, sweep_rate_limiters

__all__ = ["SchedulerManager", "nightly_refresh", "sweep_rate_limiters"]
