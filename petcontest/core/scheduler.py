"""
APScheduler Setup for Background Jobs

Drives the daily competition lifecycle:
- Nightly (23:59 in the configured timezone): end today's competition and
  distribute prizes, then create tomorrow's competition
- Hourly (minute 0): activate UPCOMING competitions whose start time passed
- Startup: make sure today's competition exists

The lifecycle operations are guarded by conditional updates, so a job that
overlaps a manual/admin invocation of the same operation is harmless.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from motor.motor_asyncio import AsyncIOMotorDatabase

from petcontest.config import Settings, settings as default_settings
from petcontest.services.competition.lifecycle import CompetitionLifecycleService
from petcontest.utils.clock import Clock, utcnow

logger = structlog.get_logger(__name__)

DatabaseProvider = Callable[[], Optional[AsyncIOMotorDatabase]]


class CompetitionScheduler:
    """
    Owns the timers for the competition jobs.

    Constructed once at process start; nothing is registered globally, and
    the job bodies (run_nightly_jobs / run_hourly_jobs) can be awaited
    directly by tests and ops tooling.
    """

    def __init__(
        self,
        db_provider: DatabaseProvider,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None
    ):
        self.db_provider = db_provider
        self.settings = settings or default_settings
        self.clock = clock or utcnow
        self.scheduler = AsyncIOScheduler(timezone=self.settings.timezone)
        self.job_status: Dict[str, Any] = {
            "last_run": None,
            "end_competition": {"runs": 0, "failures": 0, "last_result": None},
            "create_tomorrow": {"runs": 0, "failures": 0, "last_result": None},
            "update_statuses": {"runs": 0, "failures": 0, "last_result": None},
            "create_today": {"runs": 0, "failures": 0, "last_result": None},
        }

    def _lifecycle(self) -> Optional[CompetitionLifecycleService]:
        db = self.db_provider()
        if db is None:
            return None
        return CompetitionLifecycleService(db, settings=self.settings, clock=self.clock)

    async def _run_step(self, name: str, operation) -> bool:
        """Run one lifecycle step; a failure is logged and recorded, never raised."""
        status = self.job_status[name]
        status["runs"] += 1
        self.job_status["last_run"] = utcnow().isoformat()
        try:
            result = await operation()
        except Exception as e:
            status["failures"] += 1
            status["last_result"] = {"error": str(e)}
            logger.exception("Competition job step failed", step=name)
            return False

        status["last_result"] = _summarize(result)
        return True

    async def run_nightly_jobs(self) -> Dict[str, bool]:
        """End the due competition, then create tomorrow's. Each step is isolated."""
        lifecycle = self._lifecycle()
        if lifecycle is None:
            logger.warning("Database not connected, skipping nightly competition jobs")
            return {"end_competition": False, "create_tomorrow": False}

        logger.info("Running nightly competition jobs")
        ended = await self._run_step("end_competition", lifecycle.end_competition_and_select_winners)
        created = await self._run_step("create_tomorrow", lifecycle.create_tomorrow_competition)
        logger.info("Nightly competition jobs finished", end_competition=ended, create_tomorrow=created)
        return {"end_competition": ended, "create_tomorrow": created}

    async def run_hourly_jobs(self) -> Dict[str, bool]:
        lifecycle = self._lifecycle()
        if lifecycle is None:
            logger.warning("Database not connected, skipping competition status update")
            return {"update_statuses": False}

        updated = await self._run_step("update_statuses", lifecycle.update_competition_statuses)
        return {"update_statuses": updated}

    async def run_startup_jobs(self) -> Dict[str, bool]:
        lifecycle = self._lifecycle()
        if lifecycle is None:
            return {"create_today": False}

        created = await self._run_step("create_today", lifecycle.create_daily_competition)
        return {"create_today": created}

    def setup(self):
        """
        Configure all scheduled jobs.

        Job Schedule:
        - competition_nightly: daily at NIGHTLY_JOB_HOUR:NIGHTLY_JOB_MINUTE
        - competition_hourly: every hour on the hour
        """
        self.scheduler.remove_all_jobs()

        self.scheduler.add_job(
            self.run_nightly_jobs,
            CronTrigger(
                hour=self.settings.nightly_job_hour,
                minute=self.settings.nightly_job_minute,
                timezone=self.settings.timezone
            ),
            id="competition_nightly",
            name="End competition and create tomorrow's",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        self.scheduler.add_job(
            self.run_hourly_jobs,
            CronTrigger(minute=0, timezone=self.settings.timezone),
            id="competition_hourly",
            name="Activate upcoming competitions",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        logger.info(
            "Competition scheduler configured",
            nightly=f"{self.settings.nightly_job_hour:02d}:{self.settings.nightly_job_minute:02d}",
            timezone=self.settings.timezone
        )

    def start(self):
        """Start the scheduler if not already running."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Background scheduler started")

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Background scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status for monitoring."""
        return {
            "running": self.scheduler.running,
            "timezone": self.settings.timezone,
            "jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": _next_run(job)
                }
                for job in self.scheduler.get_jobs()
            ],
            "job_status": self.job_status
        }


def _next_run(job) -> Optional[str]:
    # Jobs of a scheduler that is not started yet have no next_run_time attribute
    next_run_time = getattr(job, "next_run_time", None)
    return next_run_time.isoformat() if isinstance(next_run_time, datetime) else None


def _summarize(result: Any) -> Any:
    if isinstance(result, dict):
        return {
            "competition_id": str(result.get("_id")),
            "date": result.get("date"),
            "status": result.get("status")
        }
    return result
