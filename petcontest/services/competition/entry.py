"""
Competition Entry Service

Entry submission, cancellation with refund, and entry ranking reads.

Unit of work for a submission: debit the fee -> insert the entry ->
add the entry to the prize pool -> record the ledger transaction.
Any failure after the debit removes what was written and refunds the fee
under the entry's refund key, so a debit never outlives a missing entry.
"""
from datetime import datetime
from typing import Optional, Dict, Any, List

import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pydantic import ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError, PyMongoError

from petcontest.errors import (
    ValidationError, NotFoundError, CompetitionClosed, EntryWindowClosed, DuplicateEntry,
    InsufficientFunds, CancellationNotAllowed
)
from petcontest.models.competition import CompetitionStatus
from petcontest.models.entry import EntryCreate, EntryInDB, EntryStatus
from petcontest.models.transaction import TransactionType
from petcontest.utils.clock import Clock, utcnow
from petcontest.utils.ids import parse_object_id
from petcontest.utils.ledger import TokenLedger

logger = structlog.get_logger(__name__)

CLOSED_STATUSES = (CompetitionStatus.COMPLETED.value, CompetitionStatus.CANCELLED.value)


class EntryService:

    def __init__(self, db: AsyncIOMotorDatabase, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or utcnow
        self.competitions = db.competitions
        self.entries = db.competition_entries
        self.ledger = TokenLedger(db)

    async def _get_competition(self, competition_id: str) -> Dict[str, Any]:
        competition = await self.competitions.find_one(
            {"_id": parse_object_id(competition_id, "Competition")}
        )
        if not competition:
            raise NotFoundError("Competition not found")
        return competition

    async def submit_entry(
        self,
        competition_id: str,
        user_id: str,
        pet_name: str,
        description: Optional[str],
        photo_url: str
    ) -> Dict[str, Any]:
        """
        Submit a user's single entry into a competition.

        - Competition must exist and not be completed/cancelled
        - entry_start_time <= now <= entry_end_time
        - One entry per user per competition
        - Balance must cover the entry fee (debited here)

        Returns: the created entry with ``updated_token_balance``
        """
        try:
            data = EntryCreate(pet_name=pet_name, description=description, photo_url=photo_url)
        except SchemaError as e:
            raise ValidationError(e.errors()[0]["msg"])
        competition = await self._get_competition(competition_id)
        competition_id = str(competition["_id"])
        now = self.clock()

        if competition["status"] in CLOSED_STATUSES:
            raise CompetitionClosed(f"Competition is {competition['status']}")

        if now < competition["entry_start_time"]:
            raise EntryWindowClosed(f"Entry window opens at {competition['entry_start_time'].isoformat()}")
        if now > competition["entry_end_time"]:
            raise EntryWindowClosed("Entry window has closed")

        if await self.entries.find_one({"competition_id": competition_id, "user_id": user_id}):
            raise DuplicateEntry("You already have an entry in this competition")

        entry_fee = competition.get("entry_fee", 0)
        if entry_fee > 0:
            success, message, _ = await self.ledger.debit(
                user_id, entry_fee, TransactionType.COMPETITION_ENTRY, record=False
            )
            if not success:
                raise InsufficientFunds(message)

        entry = EntryInDB(
            competition_id=competition_id,
            user_id=user_id,
            pet_name=data.pet_name,
            description=data.description,
            photo_url=data.photo_url,
            entry_fee_paid=entry_fee,
            created_at=now,
            updated_at=now
        ).model_dump()
        entry["_id"] = ObjectId()
        entry_id = str(entry["_id"])

        try:
            await self.entries.insert_one(entry)
        except PyMongoError as e:
            await self._return_fee(competition, user_id, entry_id, entry_fee, "entry_not_created")
            if isinstance(e, DuplicateKeyError):
                raise DuplicateEntry("You already have an entry in this competition")
            raise

        try:
            await self._add_to_pool(competition["_id"], entry_id, entry_fee, now)
            if entry_fee > 0:
                await self.ledger.record_transaction(
                    user_id, -entry_fee, TransactionType.COMPETITION_ENTRY,
                    description=f"Competition entry - {competition['date']}",
                    related_id=entry_id,
                    metadata={"competition_id": competition_id, "entry_id": entry_id}
                )
        except PyMongoError as e:
            logger.error(
                "Entry submission failed after insert, rolling back",
                competition=competition["date"], user_id=user_id, entry_id=entry_id, error=str(e)
            )
            await self.entries.delete_one({"_id": entry["_id"]})
            await self._release_from_pool(competition["_id"], entry_id, entry_fee, now)
            await self._return_fee(competition, user_id, entry_id, entry_fee, "entry_not_created")
            raise

        entry["updated_token_balance"] = await self.ledger.get_balance(user_id)
        logger.info("Entry submitted", competition=competition["date"], user_id=user_id, entry_id=entry_id)
        return entry

    async def cancel_entry(self, competition_id: str, entry_id: str, user_id: str) -> Dict[str, Any]:
        """
        Cancel the caller's entry and refund the fee it paid.

        Allowed until the entry window closes. The entry is flipped to
        cancelled first and marked refunded last; an entry left cancelled
        but unrefunded by a failed attempt is finished by the next call,
        even after the window.
        """
        competition = await self._get_competition(competition_id)
        competition_id = str(competition["_id"])
        now = self.clock()
        oid = parse_object_id(entry_id, "Entry")

        entry = await self.entries.find_one({"_id": oid, "competition_id": competition_id, "user_id": user_id})
        if entry is None or entry.get("refunded"):
            raise NotFoundError("Entry not found or you don't have permission to cancel it")

        if entry["status"] == EntryStatus.ACTIVE.value:
            if now > competition["entry_end_time"]:
                raise CancellationNotAllowed("Cancellation window has closed")
            entry = await self.entries.find_one_and_update(
                {"_id": oid, "status": EntryStatus.ACTIVE.value},
                {"$set": {
                    "status": EntryStatus.CANCELLED.value,
                    "cancelled_at": now,
                    "updated_at": now
                }},
                return_document=ReturnDocument.AFTER
            )
            if entry is None:
                raise NotFoundError("Entry not found or you don't have permission to cancel it")
        else:
            logger.warning("Finishing interrupted cancellation", competition=competition["date"], entry_id=entry_id)

        refund = entry.get("entry_fee_paid", 0)
        await self._release_from_pool(competition["_id"], entry_id, refund, now)
        await self._return_fee(competition, user_id, entry_id, refund, "entry_cancelled")
        await self.entries.update_one(
            {"_id": oid, "refunded": False},
            {"$set": {"refunded": True, "refunded_at": now, "updated_at": now}}
        )

        logger.info("Entry cancelled", competition=competition["date"], user_id=user_id, refund=refund)
        return {
            "refunded_amount": refund,
            "updated_token_balance": await self.ledger.get_balance(user_id)
        }

    async def _add_to_pool(self, competition_oid: ObjectId, entry_id: str, fee: int, now: datetime) -> None:
        # Membership in pooled_entry_ids guards the $inc, so it applies once per entry
        await self.competitions.update_one(
            {"_id": competition_oid, "pooled_entry_ids": {"$ne": entry_id}},
            {
                "$inc": {"prize_pool": fee, "total_entries": 1},
                "$push": {"pooled_entry_ids": entry_id},
                "$set": {"updated_at": now}
            }
        )

    async def _release_from_pool(self, competition_oid: ObjectId, entry_id: str, fee: int, now: datetime) -> None:
        await self.competitions.update_one(
            {"_id": competition_oid, "pooled_entry_ids": entry_id},
            {
                "$inc": {"prize_pool": -fee, "total_entries": -1},
                "$pull": {"pooled_entry_ids": entry_id},
                "$set": {"updated_at": now}
            }
        )

    async def _return_fee(
        self,
        competition: Dict[str, Any],
        user_id: str,
        entry_id: str,
        amount: int,
        reason: str
    ) -> None:
        """Refund an entry's fee; keyed by entry, so an entry is refunded at most once."""
        if amount <= 0:
            return
        description = (
            f"Competition entry refund - {competition['date']}"
            if reason == "entry_cancelled"
            else f"Entry fee returned - {competition['date']}"
        )
        await self.ledger.credit(
            user_id, amount, TransactionType.COMPETITION_REFUND,
            description=description,
            related_id=entry_id,
            metadata={"competition_id": str(competition["_id"]), "entry_id": entry_id, "reason": reason},
            idempotency_key=f"COMPETITION_REFUND_{entry_id}"
        )

    async def get_my_entry(self, competition_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Caller's active entry with its live rank (ties share a rank)."""
        entry = await self.entries.find_one({
            "competition_id": competition_id,
            "user_id": user_id,
            "status": EntryStatus.ACTIVE.value
        })
        if not entry:
            return None

        higher_ranked = await self.entries.count_documents({
            "competition_id": competition_id,
            "status": EntryStatus.ACTIVE.value,
            "votes_count": {"$gt": entry.get("votes_count", 0)}
        })
        entry["current_rank"] = higher_ranked + 1
        return entry

    async def get_leaderboard(self, competition_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        cursor = self.entries.find({
            "competition_id": competition_id,
            "status": EntryStatus.ACTIVE.value
        }).sort([("votes_count", DESCENDING), ("created_at", ASCENDING)]).limit(limit)
        return await cursor.to_list(length=limit)

    async def list_entries(
        self,
        competition_id: str,
        page: int = 1,
        limit: int = 20,
        voted_by: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Paged entries of a competition. With ``voted_by`` each entry carries
        ``has_voted`` for that user.
        """
        query = {"competition_id": competition_id, "status": EntryStatus.ACTIVE.value}
        skip = (page - 1) * limit
        cursor = self.entries.find(query).sort(
            [("votes_count", DESCENDING), ("created_at", ASCENDING)]
        ).skip(skip).limit(limit)
        entries = await cursor.to_list(length=limit)
        total = await self.entries.count_documents(query)

        if voted_by:
            votes = await self.db.competition_votes.find(
                {"competition_id": competition_id, "user_id": voted_by},
                {"entry_id": 1}
            ).to_list(length=None)
            voted_ids = {vote["entry_id"] for vote in votes}
            for entry in entries:
                entry["has_voted"] = str(entry["_id"]) in voted_ids

        return {
            "entries": entries,
            "pagination": {
                "current_page": page,
                "total_pages": (total + limit - 1) // limit if limit else 0,
                "total_entries": total,
                "has_more": skip + len(entries) < total
            }
        }
