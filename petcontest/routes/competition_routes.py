from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from petcontest.config import settings
from petcontest.errors import CompetitionError
from petcontest.models.entry import EntryCreate
from petcontest.models.vote import VoteCreate
from petcontest.routes.dependencies import get_database, get_current_user_id, get_client_ip
from petcontest.services.competition.entry import EntryService
from petcontest.services.competition.queries import CompetitionQueryService
from petcontest.services.competition.voting import VoteService, compute_device_fingerprint
from petcontest.utils.response import (
    success_response,
    competition_error_response,
    unauthorized_response,
    service_unavailable_response
)

router = APIRouter(prefix="/competitions", tags=["Competitions"])


@router.get("")
async def list_competitions(
    status: str = Query("all", description="all, active, upcoming, previous, cancelled"),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_database)
):
    """List competitions by status keyword, newest date first."""
    if db is None:
        return service_unavailable_response()

    result = await CompetitionQueryService(db).list_competitions(
        status=status, start_date=start_date, end_date=end_date, page=page, limit=limit
    )
    return success_response(message="Competitions retrieved successfully", data=result)


@router.get("/current")
async def get_current_competitions(
    user_id: Optional[str] = Depends(get_current_user_id),
    db=Depends(get_database)
):
    """
    Active competition (open for voting), the next upcoming one, and the
    caller's entry in the active one when a caller id is present.
    """
    if db is None:
        return service_unavailable_response()

    result = await CompetitionQueryService(db).get_current_competitions(user_id)
    return success_response(message="Current competitions retrieved successfully", data=result)


@router.get("/previous-winners")
async def get_previous_winners(db=Depends(get_database)):
    if db is None:
        return service_unavailable_response()

    competition = await CompetitionQueryService(db).get_previous_winners()
    if competition is None:
        return success_response(message="No previous competitions found", data={"competition": None})
    return success_response(message="Previous winners retrieved successfully", data={"competition": competition})


@router.get("/{competition_id}")
async def get_competition(
    competition_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: Optional[str] = Depends(get_current_user_id),
    db=Depends(get_database)
):
    """Competition details with winners and a page of its entries."""
    if db is None:
        return service_unavailable_response()

    try:
        competition = await CompetitionQueryService(db).get_competition_with_winners(competition_id)
        entries = await EntryService(db).list_entries(
            str(competition["_id"]), page=page, limit=limit, voted_by=user_id
        )
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(
        message="Competition retrieved successfully",
        data={"competition": competition, **entries}
    )


@router.get("/{competition_id}/leaderboard")
async def get_leaderboard(
    competition_id: str,
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_database)
):
    if db is None:
        return service_unavailable_response()

    try:
        competition = await CompetitionQueryService(db).get_competition(competition_id)
    except CompetitionError as e:
        return competition_error_response(e)

    leaderboard = await EntryService(db).get_leaderboard(str(competition["_id"]), limit=limit)
    return success_response(
        message="Leaderboard retrieved successfully",
        data={"competition_id": str(competition["_id"]), "leaderboard": leaderboard}
    )


@router.get("/{competition_id}/my-entry")
async def get_my_entry(
    competition_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    db=Depends(get_database)
):
    if not user_id:
        return unauthorized_response()
    if db is None:
        return service_unavailable_response()

    try:
        competition = await CompetitionQueryService(db).get_competition(competition_id)
    except CompetitionError as e:
        return competition_error_response(e)

    entry = await EntryService(db).get_my_entry(str(competition["_id"]), user_id)
    if entry is None:
        return success_response(message="No entry found", data={"has_entry": False, "entry": None})
    return success_response(message="Entry retrieved successfully", data={"has_entry": True, "entry": entry})


@router.get("/{competition_id}/entries/{entry_id}")
async def get_entry_details(
    competition_id: str,
    entry_id: str,
    device_fingerprint: Optional[str] = Header(None, alias="X-Device-Fingerprint"),
    user_id: Optional[str] = Depends(get_current_user_id),
    db=Depends(get_database)
):
    """An active entry with whether the caller can vote for it."""
    if not user_id:
        return unauthorized_response()
    if db is None:
        return service_unavailable_response()

    try:
        result = await VoteService(db, settings=settings).get_entry_details(
            competition_id, entry_id, user_id, device_fingerprint=device_fingerprint
        )
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(message="Entry details retrieved successfully", data=result)


@router.post("/{competition_id}/entry")
async def submit_entry(
    competition_id: str,
    entry_data: EntryCreate,
    user_id: Optional[str] = Depends(get_current_user_id),
    db=Depends(get_database)
):
    """
    Submit an entry.

    - Entry window must be open
    - One entry per user per competition
    - The competition's entry fee is debited from the caller's tokens
    """
    if not user_id:
        return unauthorized_response()
    if db is None:
        return service_unavailable_response()

    try:
        entry = await EntryService(db).submit_entry(
            competition_id,
            user_id,
            pet_name=entry_data.pet_name,
            description=entry_data.description,
            photo_url=entry_data.photo_url
        )
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(message="Entry submitted successfully", data={"entry": entry}, status_code=201)


@router.delete("/{competition_id}/entry/{entry_id}")
async def cancel_entry(
    competition_id: str,
    entry_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    db=Depends(get_database)
):
    """Cancel the caller's entry before the entry window closes; the fee is refunded."""
    if not user_id:
        return unauthorized_response()
    if db is None:
        return service_unavailable_response()

    try:
        result = await EntryService(db).cancel_entry(competition_id, entry_id, user_id)
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(message="Entry cancelled and refunded successfully", data=result)


@router.post("/{competition_id}/vote/{entry_id}")
async def vote_for_entry(
    competition_id: str,
    entry_id: str,
    vote_data: VoteCreate,
    request: Request,
    user_id: Optional[str] = Depends(get_current_user_id),
    db=Depends(get_database)
):
    """
    Vote for an entry.

    Suspicious votes (many votes from one device or network) are accepted
    and flagged for review.
    """
    if not user_id:
        return unauthorized_response()
    if db is None:
        return service_unavailable_response()

    fingerprint = compute_device_fingerprint(vote_data.device_info, vote_data.device_fingerprint)
    try:
        result = await VoteService(db, settings=settings).cast_vote(
            competition_id,
            entry_id,
            user_id,
            device_fingerprint=fingerprint,
            device_info=vote_data.device_info,
            ip_address=get_client_ip(request)
        )
    except CompetitionError as e:
        return competition_error_response(e)

    return success_response(
        message="Vote cast successfully",
        data={"entry_id": entry_id, "votes_count": result["votes_count"]},
        status_code=201
    )
