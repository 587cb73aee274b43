from datetime import datetime

from petcontest.core.scheduler import CompetitionScheduler
from petcontest.services.competition.lifecycle import CompetitionLifecycleService


def make_scheduler(db, settings, clock):
    return CompetitionScheduler(lambda: db, settings=settings, clock=clock)


async def test_nightly_jobs_end_then_create_tomorrow(db, settings, clock, lifecycle):
    await lifecycle.create_daily_competition()
    clock.set(datetime(2025, 3, 11, 0, 0, 30))

    result = await make_scheduler(db, settings, clock).run_nightly_jobs()

    assert result == {"end_competition": True, "create_tomorrow": True}
    assert (await db.competitions.find_one({"date": "2025-03-10"}))["status"] == "completed"
    assert (await db.competitions.find_one({"date": "2025-03-12"}))["status"] == "upcoming"


async def test_failed_end_does_not_block_tomorrow(db, settings, clock, monkeypatch):
    async def broken_end(self):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(CompetitionLifecycleService, "end_competition_and_select_winners", broken_end)
    scheduler = make_scheduler(db, settings, clock)

    result = await scheduler.run_nightly_jobs()

    assert result == {"end_competition": False, "create_tomorrow": True}
    assert await db.competitions.find_one({"date": "2025-03-11"}) is not None
    status = scheduler.get_status()["job_status"]
    assert status["end_competition"]["failures"] == 1
    assert status["end_competition"]["last_result"] == {"error": "ledger unavailable"}
    assert status["create_tomorrow"]["failures"] == 0


async def test_hourly_job_activates(db, settings, clock, lifecycle):
    await lifecycle.create_tomorrow_competition()
    clock.set(datetime(2025, 3, 11, 0, 0))
    scheduler = make_scheduler(db, settings, clock)

    assert await scheduler.run_hourly_jobs() == {"update_statuses": True}
    assert scheduler.job_status["update_statuses"]["last_result"] == 1


async def test_startup_creates_today(db, settings, clock):
    scheduler = make_scheduler(db, settings, clock)

    assert await scheduler.run_startup_jobs() == {"create_today": True}
    assert (await db.competitions.find_one({"date": "2025-03-10"}))["status"] == "active"


async def test_jobs_skip_without_database(settings, clock):
    scheduler = CompetitionScheduler(lambda: None, settings=settings, clock=clock)

    assert await scheduler.run_nightly_jobs() == {"end_competition": False, "create_tomorrow": False}
    assert await scheduler.run_hourly_jobs() == {"update_statuses": False}
    assert scheduler.job_status["end_competition"]["runs"] == 0


def test_setup_registers_cron_jobs(settings, clock):
    scheduler = CompetitionScheduler(lambda: None, settings=settings, clock=clock)
    scheduler.setup()

    status = scheduler.get_status()
    assert status["running"] is False
    assert {job["id"] for job in status["jobs"]} == {"competition_nightly", "competition_hourly"}

    nightly = scheduler.scheduler.get_job("competition_nightly")
    assert nightly.max_instances == 1
    assert nightly.coalesce is True
    assert str(nightly.trigger.fields[5]) == "23"
    assert str(nightly.trigger.fields[6]) == "59"
