"""
Competition Lifecycle Service

Owns the daily competition state machine:
- create today's competition (ACTIVE) and tomorrow's (UPCOMING)
- activate UPCOMING competitions once start_time is reached
- end the due ACTIVE competition, rank entries and pay the prize pool

Every operation is idempotent or guarded by a conditional update, so the
scheduler, ops scripts and admin endpoints may call them concurrently.
"""
from datetime import timedelta, datetime
from typing import Optional, Dict, Any, List

import structlog
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from petcontest.config import Settings, settings as default_settings
from petcontest.errors import NotFoundError, CancellationNotAllowed, InvalidSchedule, ValidationError
from petcontest.models.competition import (
    CompetitionCreate, CompetitionInDB, CompetitionStatus, WinnerSlot, WINNER_POSITIONS
)
from petcontest.models.entry import EntryStatus
from petcontest.models.transaction import TransactionType
from petcontest.services.competition.prize_split import calculate_prize_split
from petcontest.services.competition.queries import CompetitionQueryService
from petcontest.utils.clock import Clock, utcnow, day_bounds, to_naive_utc
from petcontest.utils.ids import parse_object_id
from petcontest.utils.ledger import TokenLedger

logger = structlog.get_logger(__name__)

ENTRY_WINDOW_OFFSET = timedelta(hours=1)


class CompetitionLifecycleService:
    """
    Lifecycle engine for daily competitions.

    Jobs:
    1. create_daily_competition / create_tomorrow_competition: nightly + startup
    2. update_competition_statuses: hourly
    3. end_competition_and_select_winners: nightly
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None
    ):
        self.db = db
        self.settings = settings or default_settings
        self.clock = clock or utcnow
        self.competitions = db.competitions
        self.entries = db.competition_entries
        self.ledger = TokenLedger(db)
        self.queries = CompetitionQueryService(db, clock=self.clock)

    # ==========================================
    # CREATION
    # ==========================================

    async def create_daily_competition(self) -> Dict[str, Any]:
        """
        Ensure today's competition exists.

        Created retroactively as ACTIVE; the entry window runs from one hour
        before the day starts to one hour before it ends.
        """
        now = self.clock()
        start_time, end_time = day_bounds(now.date())
        return await self._ensure_competition(
            date=now.date().isoformat(),
            status=CompetitionStatus.ACTIVE,
            start_time=start_time,
            end_time=end_time,
            entry_start_time=start_time - ENTRY_WINDOW_OFFSET,
            entry_end_time=end_time - ENTRY_WINDOW_OFFSET,
            now=now
        )

    async def create_tomorrow_competition(self) -> Dict[str, Any]:
        """
        Ensure tomorrow's competition exists.

        Entries open one hour after this call (not at a fixed clock time) and
        close one hour before tomorrow starts.
        """
        now = self.clock()
        tomorrow = now.date() + timedelta(days=1)
        start_time, end_time = day_bounds(tomorrow)
        entry_start_time = now + ENTRY_WINDOW_OFFSET
        entry_end_time = start_time - ENTRY_WINDOW_OFFSET

        if entry_start_time >= entry_end_time:
            logger.warning(
                "Tomorrow's competition created with an empty entry window",
                date=tomorrow.isoformat(),
                entry_start_time=entry_start_time.isoformat(),
                entry_end_time=entry_end_time.isoformat()
            )

        return await self._ensure_competition(
            date=tomorrow.isoformat(),
            status=CompetitionStatus.UPCOMING,
            start_time=start_time,
            end_time=end_time,
            entry_start_time=entry_start_time,
            entry_end_time=entry_end_time,
            now=now
        )

    async def create_competition(self, data: CompetitionCreate) -> Dict[str, Any]:
        """Admin-created competition for an arbitrary date."""
        now = self.clock()
        start_time = to_naive_utc(data.start_time)
        end_time = to_naive_utc(data.end_time)
        entry_start_time = to_naive_utc(data.entry_start_time)
        entry_end_time = to_naive_utc(data.entry_end_time)

        if not (entry_start_time < entry_end_time < start_time < end_time):
            raise InvalidSchedule("Expected entry_start_time < entry_end_time < start_time < end_time")

        if await self.competitions.find_one({"date": data.date}):
            raise ValidationError("Competition already exists for this date")

        competition = CompetitionInDB(
            date=data.date,
            status=CompetitionStatus.ACTIVE if start_time <= now else CompetitionStatus.UPCOMING,
            entry_fee=data.entry_fee,
            start_time=start_time,
            end_time=end_time,
            entry_start_time=entry_start_time,
            entry_end_time=entry_end_time,
            created_at=now,
            updated_at=now
        ).model_dump()
        try:
            result = await self.competitions.insert_one(competition)
        except DuplicateKeyError:
            raise ValidationError("Competition already exists for this date")
        competition["_id"] = result.inserted_id
        logger.info("Created competition", date=data.date, status=competition["status"])
        return competition

    async def _ensure_competition(
        self,
        date: str,
        status: CompetitionStatus,
        start_time: datetime,
        end_time: datetime,
        entry_start_time: datetime,
        entry_end_time: datetime,
        now: datetime
    ) -> Dict[str, Any]:
        existing = await self.competitions.find_one({"date": date})
        if existing:
            logger.info("Competition already exists", date=date)
            return existing

        competition = CompetitionInDB(
            date=date,
            status=status,
            entry_fee=self.settings.entry_fee,
            start_time=start_time,
            end_time=end_time,
            entry_start_time=entry_start_time,
            entry_end_time=entry_end_time,
            created_at=now,
            updated_at=now
        ).model_dump()

        try:
            result = await self.competitions.insert_one(competition)
        except DuplicateKeyError:
            # Lost the race to a concurrent creator; theirs is the competition
            logger.info("Competition created concurrently", date=date)
            return await self.competitions.find_one({"date": date})

        competition["_id"] = result.inserted_id
        logger.info("Created competition", date=date, status=competition["status"])
        return competition

    # ==========================================
    # STATUS TRANSITIONS
    # ==========================================

    async def update_competition_statuses(self) -> int:
        """Activate every UPCOMING competition whose start_time has passed."""
        now = self.clock()
        result = await self.competitions.update_many(
            {
                "status": CompetitionStatus.UPCOMING.value,
                "start_time": {"$lte": now}
            },
            {"$set": {"status": CompetitionStatus.ACTIVE.value, "updated_at": now}}
        )
        logger.info("Competition statuses updated", activated=result.modified_count)
        return result.modified_count

    async def cancel_competition(self, competition_id: str) -> Dict[str, Any]:
        """Admin cancellation; only before prizes are distributed."""
        now = self.clock()
        oid = parse_object_id(competition_id, "Competition")
        cancelled = await self.competitions.find_one_and_update(
            {
                "_id": oid,
                "status": {"$in": [CompetitionStatus.UPCOMING.value, CompetitionStatus.ACTIVE.value]},
                "prizes_distributed": False
            },
            {"$set": {
                "status": CompetitionStatus.CANCELLED.value,
                "cancelled_at": now,
                "updated_at": now
            }},
            return_document=ReturnDocument.AFTER
        )
        if cancelled is None:
            if not await self.competitions.find_one({"_id": oid}):
                raise NotFoundError("Competition not found")
            raise CancellationNotAllowed("Only upcoming or active competitions without payouts can be cancelled")

        logger.info("Competition cancelled", date=cancelled["date"])
        return cancelled

    # ==========================================
    # END OF COMPETITION
    # ==========================================

    async def end_competition_and_select_winners(self) -> Optional[Dict[str, Any]]:
        """
        End the due competition and distribute its prize pool.

        Flow:
        1. ATOMIC: claim the competition by flipping prizes_distributed
           (only one caller can win this; everyone else gets None)
        2. Rank the top 3 active entries (votes desc, earliest entry first)
        3. Freeze the ranking and prize split on the competition
        4. Credit each winner (idempotent per competition/entry/position)
        5. Mark COMPLETED with the winners in a single update

        A claim whose distributor died mid-way is resumed once its lease
        expires; the ledger skips credits already made and finishes
        any left pending.

        Returns: the completed competition with winners resolved, or None
        """
        now = self.clock()

        competition = await self.competitions.find_one_and_update(
            {
                "status": CompetitionStatus.ACTIVE.value,
                "end_time": {"$lte": now},
                "prizes_distributed": False
            },
            {"$set": {
                "prizes_distributed": True,
                "distribution_started_at": now,
                "updated_at": now
            }},
            sort=[("end_time", ASCENDING)],
            return_document=ReturnDocument.AFTER
        )

        if competition is None:
            competition = await self._reclaim_stalled_distribution(now)
            if competition is None:
                logger.info("No competition to end at this time")
                return None
        else:
            logger.info("Ending competition", date=competition["date"], prize_pool=competition.get("prize_pool", 0))

        return await self._distribute(competition, now)

    async def _reclaim_stalled_distribution(self, now: datetime) -> Optional[Dict[str, Any]]:
        lease = timedelta(seconds=self.settings.distribution_lease_seconds)
        stalled = await self.competitions.find_one(
            {
                "status": CompetitionStatus.ACTIVE.value,
                "prizes_distributed": True,
                "distribution_started_at": {"$lte": now - lease}
            },
            sort=[("end_time", ASCENDING)]
        )
        if stalled is None:
            return None

        reclaimed = await self.competitions.find_one_and_update(
            {
                "_id": stalled["_id"],
                "status": CompetitionStatus.ACTIVE.value,
                "distribution_started_at": stalled["distribution_started_at"]
            },
            {"$set": {"distribution_started_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER
        )
        if reclaimed is not None:
            logger.warning(
                "Resuming stalled prize distribution",
                date=reclaimed["date"],
                previous_claim=stalled["distribution_started_at"].isoformat()
            )
        return reclaimed

    async def _rank_entries(self, competition_id: str) -> List[Dict[str, Any]]:
        cursor = self.entries.find({
            "competition_id": competition_id,
            "status": EntryStatus.ACTIVE.value
        }).sort([("votes_count", DESCENDING), ("created_at", ASCENDING)]).limit(3)
        return await cursor.to_list(length=3)

    async def _distribute(self, competition: Dict[str, Any], now: datetime) -> Optional[Dict[str, Any]]:
        competition_id = str(competition["_id"])
        claim = {"_id": competition["_id"], "distribution_started_at": competition["distribution_started_at"]}

        plan = competition.get("distribution_plan")
        if plan is None:
            top_entries = await self._rank_entries(competition_id)
            prizes = calculate_prize_split(competition.get("prize_pool", 0), len(top_entries))
            plan = [
                {
                    "position": index + 1,
                    "entry_id": str(entry["_id"]),
                    "user_id": entry["user_id"],
                    "votes": entry.get("votes_count", 0),
                    "prize": prize
                }
                for index, (entry, prize) in enumerate(zip(top_entries, prizes))
            ]
            frozen = await self.competitions.update_one(claim, {"$set": {"distribution_plan": plan}})
            if frozen.matched_count == 0:
                logger.warning("Lost distribution claim before payout", date=competition["date"])
                return None

        winners: Dict[str, Any] = {position: None for position in WINNER_POSITIONS}
        for place in plan:
            if place["prize"] <= 0:
                continue

            position = place["position"]
            await self.ledger.credit(
                user_id=place["user_id"],
                amount=place["prize"],
                transaction_type=TransactionType.COMPETITION_PRIZE,
                description=f"Competition prize (#{position}) - {competition['date']}",
                related_id=place["entry_id"],
                metadata={
                    "competition_id": competition_id,
                    "entry_id": place["entry_id"],
                    "position": position
                },
                idempotency_key=f"COMPETITION_PRIZE_{competition_id}_{place['entry_id']}_{position}"
            )
            await self.entries.update_one(
                {"_id": parse_object_id(place["entry_id"], "Entry")},
                {"$set": {"rank": position, "updated_at": now}}
            )
            winners[WINNER_POSITIONS[position - 1]] = WinnerSlot(
                entry_id=place["entry_id"],
                user_id=place["user_id"],
                votes=place["votes"],
                prize=place["prize"]
            ).model_dump()

            logger.info(
                "Prize awarded",
                date=competition["date"],
                position=WINNER_POSITIONS[position - 1],
                user_id=place["user_id"],
                prize=place["prize"],
                votes=place["votes"]
            )

        completed = await self.competitions.update_one(
            {"_id": competition["_id"], "status": CompetitionStatus.ACTIVE.value},
            {"$set": {
                "status": CompetitionStatus.COMPLETED.value,
                "winners": winners,
                "completed_at": now,
                "updated_at": now
            }}
        )
        if completed.modified_count:
            logger.info(
                "Competition completed",
                date=competition["date"],
                entries_ranked=len(plan),
                winners=sum(1 for slot in winners.values() if slot)
            )

        return await self.queries.get_competition_with_winners(competition_id)
