"""
Competition Query Service

Read side of the competition core: current/upcoming competitions,
past winners and paged listings, with winner entries resolved for display.
"""
from typing import Optional, Dict, Any, List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from petcontest.errors import NotFoundError
from petcontest.models.competition import CompetitionStatus, WINNER_POSITIONS
from petcontest.models.entry import EntryStatus
from petcontest.utils.clock import Clock, utcnow
from petcontest.utils.ids import parse_object_id

WINNER_ENTRY_PROJECTION = {"pet_name": 1, "photo_url": 1, "votes_count": 1, "user_id": 1}

LISTING_FILTERS = {
    "all": None,
    "active": CompetitionStatus.ACTIVE,
    "upcoming": CompetitionStatus.UPCOMING,
    "previous": CompetitionStatus.COMPLETED,
    "cancelled": CompetitionStatus.CANCELLED,
}


class CompetitionQueryService:

    def __init__(self, db: AsyncIOMotorDatabase, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or utcnow
        self.competitions = db.competitions
        self.entries = db.competition_entries

    async def get_competition(self, competition_id: str) -> Dict[str, Any]:
        competition = await self.competitions.find_one(
            {"_id": parse_object_id(competition_id, "Competition")}
        )
        if not competition:
            raise NotFoundError("Competition not found")
        return competition

    async def get_competition_with_winners(self, competition_id: str) -> Dict[str, Any]:
        """Competition document with each podium slot's entry attached under ``entry``."""
        competition = await self.get_competition(competition_id)
        return await self._resolve_winners(competition)

    async def _resolve_winners(self, competition: Dict[str, Any]) -> Dict[str, Any]:
        winners = competition.get("winners") or {}
        for position in WINNER_POSITIONS:
            slot = winners.get(position)
            if not slot or not slot.get("entry_id"):
                continue
            slot["entry"] = await self.entries.find_one(
                {"_id": parse_object_id(slot["entry_id"], "Entry")},
                WINNER_ENTRY_PROJECTION
            )
        return competition

    async def get_current_competitions(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        The competition open for voting right now, the next upcoming one,
        and the caller's active entry in the current one.
        """
        now = self.clock()

        active = await self.competitions.find_one({
            "status": CompetitionStatus.ACTIVE.value,
            "start_time": {"$lte": now},
            "end_time": {"$gte": now}
        })

        upcoming_cursor = self.competitions.find({
            "status": CompetitionStatus.UPCOMING.value,
            "start_time": {"$gt": now}
        }).sort("start_time", ASCENDING).limit(1)
        upcoming = await upcoming_cursor.to_list(length=1)

        user_entry = None
        if active and user_id:
            user_entry = await self.entries.find_one({
                "competition_id": str(active["_id"]),
                "user_id": user_id,
                "status": EntryStatus.ACTIVE.value
            })

        return {
            "active": active,
            "upcoming": upcoming[0] if upcoming else None,
            "user_entry": user_entry
        }

    async def get_previous_winners(self) -> Optional[Dict[str, Any]]:
        """Most recently finished competition with its winners."""
        cursor = self.competitions.find({
            "status": CompetitionStatus.COMPLETED.value,
            "prizes_distributed": True
        }).sort("end_time", DESCENDING).limit(1)
        latest = await cursor.to_list(length=1)
        if not latest:
            return None
        return await self._resolve_winners(latest[0])

    async def list_competitions(
        self,
        status: str = "all",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Dict[str, Any]:
        """
        Paged listing by status keyword.

        Dates filter on the ``YYYY-MM-DD`` key by string comparison; full
        ISO timestamps are cut to their date part.
        """
        if status not in LISTING_FILTERS:
            status = "all"

        query: Dict[str, Any] = {}
        wanted = LISTING_FILTERS[status]
        if wanted is not None:
            query["status"] = wanted.value
        if wanted == CompetitionStatus.COMPLETED:
            query["prizes_distributed"] = True

        if start_date or end_date:
            query["date"] = {}
            if start_date:
                query["date"]["$gte"] = start_date.split("T")[0]
            if end_date:
                query["date"]["$lte"] = end_date.split("T")[0]

        skip = (page - 1) * limit
        cursor = self.competitions.find(query).sort(
            [("date", DESCENDING), ("start_time", DESCENDING)]
        ).skip(skip).limit(limit)
        competitions: List[Dict[str, Any]] = await cursor.to_list(length=limit)
        for competition in competitions:
            await self._resolve_winners(competition)

        total = await self.competitions.count_documents(query)
        total_pages = (total + limit - 1) // limit if limit else 0

        return {
            "competitions": competitions,
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total": total,
                "has_more": page < total_pages
            }
        }
