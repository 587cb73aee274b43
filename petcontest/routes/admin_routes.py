"""
Admin / ops endpoints.

Access control is enforced by the gateway in front of /api/admin; these
handlers only call the same lifecycle and moderation operations the
scheduler and manage_competitions.py use.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from petcontest.config import settings
from petcontest.errors import CompetitionError
from petcontest.models.competition import CompetitionCreate
from petcontest.models.vote import VoteFlagUpdate
from petcontest.routes.dependencies import get_database
from petcontest.services.competition.lifecycle import CompetitionLifecycleService
from petcontest.services.competition.voting import VoteService
from petcontest.utils.response import (
    success_response,
    error_response,
    competition_error_response,
    service_unavailable_response
)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/competitions")
async def create_competition(
    competition_data: CompetitionCreate,
    db=Depends(get_database)
):
    """Create a competition for an arbitrary date (one per date)."""
    if db is None:
        return service_unavailable_response()

    try:
        competition = await CompetitionLifecycleService(db, settings=settings).create_competition(competition_data)
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(message="Competition created successfully", data={"competition": competition}, status_code=201)


@router.post("/competitions/{competition_id}/cancel")
async def cancel_competition(competition_id: str, db=Depends(get_database)):
    if db is None:
        return service_unavailable_response()

    try:
        competition = await CompetitionLifecycleService(db, settings=settings).cancel_competition(competition_id)
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(message="Competition cancelled", data={"competition": competition})


@router.post("/competitions/jobs/{job_name}")
async def run_competition_job(job_name: str, db=Depends(get_database)):
    """
    Manually run one lifecycle job.

    Jobs: create-today, create-tomorrow, update-statuses, end
    Safe to call while the scheduler is running.
    """
    if db is None:
        return service_unavailable_response()

    lifecycle = CompetitionLifecycleService(db, settings=settings)
    jobs = {
        "create-today": lifecycle.create_daily_competition,
        "create-tomorrow": lifecycle.create_tomorrow_competition,
        "update-statuses": lifecycle.update_competition_statuses,
        "end": lifecycle.end_competition_and_select_winners,
    }
    job = jobs.get(job_name)
    if job is None:
        return error_response(message=f"Unknown job: {job_name}", status_code=404, code="not_found")

    result = await job()

    if job_name == "update-statuses":
        return success_response(message="Competition statuses updated", data={"activated": result})
    if job_name == "end" and result is None:
        return success_response(message="No competition to end at this time", data={"competition": None})
    return success_response(message=f"Job {job_name} executed", data={"competition": result})


@router.get("/competitions/scheduler")
async def get_scheduler_status(request: Request):
    competition_scheduler = getattr(request.app.state, "competition_scheduler", None)
    if competition_scheduler is None:
        return error_response(message="Scheduler not available", status_code=503)
    return success_response(message="Scheduler status", data=competition_scheduler.get_status())


@router.get("/votes")
async def list_votes(
    competition_id: Optional[str] = Query(None),
    entry_id: Optional[str] = Query(None),
    flagged_only: bool = Query(False),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db=Depends(get_database)
):
    """Votes for moderation review, newest first; flagged_only narrows to flagged votes."""
    if db is None:
        return service_unavailable_response()

    result = await VoteService(db, settings=settings).list_votes(
        competition_id=competition_id,
        entry_id=entry_id,
        flagged_only=flagged_only,
        page=page,
        limit=limit,
        sort_order=sort_order
    )
    return success_response(message="Competition votes fetched successfully", data=result)


@router.patch("/votes/{vote_id}/flag")
async def flag_vote(vote_id: str, flag_data: VoteFlagUpdate, db=Depends(get_database)):
    if db is None:
        return service_unavailable_response()

    try:
        vote = await VoteService(db, settings=settings).flag_vote(vote_id, flag_data.flagged, flag_data.reason)
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(
        message="Vote flagged for review" if flag_data.flagged else "Vote unflagged",
        data={"vote": vote}
    )


@router.delete("/votes/{vote_id}")
async def delete_vote(vote_id: str, db=Depends(get_database)):
    """Delete a vote; the entry's and competition's vote counters are decremented."""
    if db is None:
        return service_unavailable_response()

    try:
        vote = await VoteService(db, settings=settings).delete_vote(vote_id)
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(message="Vote deleted", data={"vote": vote})
