"""
Vote Service

Casting votes with duplicate prevention, the moderation actions that
touch votes (flag/unflag, delete, the review queue) and per-entry vote
status for the caller.

Guarantees:
- One vote per (competition, entry, user); the unique index decides
- votes_count / total_votes move only through $inc together with the row
- Fraud detection is advisory: suspicious votes are flagged, never refused
"""
import hashlib
from typing import Optional, Dict, Any

import structlog
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from petcontest.config import Settings, settings as default_settings
from petcontest.errors import (
    NotFoundError, VotingClosed, EntryMismatch, EntryNotActive, OwnEntryVote, DuplicateVote
)
from petcontest.models.competition import CompetitionStatus
from petcontest.models.entry import EntryStatus
from petcontest.models.vote import DeviceInfo, VoteInDB
from petcontest.utils.clock import Clock, utcnow
from petcontest.utils.ids import parse_object_id

logger = structlog.get_logger(__name__)


def compute_device_fingerprint(device_info: Optional[DeviceInfo], provided: Optional[str] = None) -> str:
    """
    Fingerprint used for same-device detection.

    Clients send a SHA256 computed on the device; older clients only send
    device details, which are hashed the same way here.
    """
    if provided:
        return provided
    if device_info is None:
        return hashlib.sha256(b"unknown-device").hexdigest()
    raw = f"{device_info.device_id}-{device_info.device_model}-{device_info.platform}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class VoteService:

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
        self.votes = db.competition_votes

    async def cast_vote(
        self,
        competition_id: str,
        entry_id: str,
        user_id: str,
        device_fingerprint: str,
        device_info: Optional[DeviceInfo] = None,
        ip_address: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record a vote for an entry.

        - Competition ACTIVE and start_time <= now < end_time
        - Entry belongs to the competition and is active
        - Not the voter's own entry
        - No earlier vote by this user for this entry

        Returns: the vote document and the entry's new votes_count
        """
        competition = await self.competitions.find_one(
            {"_id": parse_object_id(competition_id, "Competition")}
        )
        if not competition:
            raise NotFoundError("Competition not found")
        competition_id = str(competition["_id"])
        now = self.clock()

        if competition["status"] != CompetitionStatus.ACTIVE.value:
            raise VotingClosed("Competition is not active")
        if not (competition["start_time"] <= now < competition["end_time"]):
            raise VotingClosed("Voting is closed for this competition")

        entry = await self.entries.find_one({"_id": parse_object_id(entry_id, "Entry")})
        if not entry:
            raise NotFoundError("Entry not found")
        entry_id = str(entry["_id"])
        if entry["competition_id"] != competition_id:
            raise EntryMismatch("Entry does not belong to this competition")
        if entry["status"] != EntryStatus.ACTIVE.value:
            raise EntryNotActive("Cannot vote for cancelled entry")
        if entry["user_id"] == user_id:
            raise OwnEntryVote("Cannot vote for your own entry")

        flag_reason = await self._detect_suspicious_vote(competition_id, device_fingerprint, ip_address)

        vote = VoteInDB(
            competition_id=competition_id,
            entry_id=entry_id,
            user_id=user_id,
            device_fingerprint=device_fingerprint,
            device_info=device_info,
            ip_address=ip_address,
            flagged_for_review=flag_reason is not None,
            flag_reason=flag_reason,
            created_at=now,
            updated_at=now
        ).model_dump()

        try:
            result = await self.votes.insert_one(vote)
        except DuplicateKeyError:
            raise DuplicateVote("You already voted for this entry")
        vote["_id"] = result.inserted_id

        votes_count = await self._apply_counters(vote, entry["_id"], competition["_id"], now)

        if flag_reason:
            logger.warning(
                "Vote flagged for review",
                competition=competition["date"],
                entry_id=entry_id,
                user_id=user_id,
                reason=flag_reason
            )

        return {"vote": vote, "votes_count": votes_count}

    async def _apply_counters(self, vote: Dict[str, Any], entry_oid, competition_oid, now) -> int:
        """
        Increment the entry and competition counters for a freshly inserted vote.

        If either increment fails, the increments already applied and the
        vote row are rolled back before the error propagates.
        """
        entry_incremented = False
        try:
            updated_entry = await self.entries.find_one_and_update(
                {"_id": entry_oid},
                {"$inc": {"votes_count": 1}, "$set": {"updated_at": now}},
                return_document=ReturnDocument.AFTER
            )
            entry_incremented = True
            await self.competitions.update_one(
                {"_id": competition_oid},
                {"$inc": {"total_votes": 1}, "$set": {"updated_at": now}}
            )
        except PyMongoError:
            logger.exception("Vote counters failed, rolling back vote", vote_id=str(vote["_id"]))
            if entry_incremented:
                await self.entries.update_one(
                    {"_id": entry_oid, "votes_count": {"$gt": 0}},
                    {"$inc": {"votes_count": -1}}
                )
            await self.votes.delete_one({"_id": vote["_id"]})
            raise
        return updated_entry["votes_count"]

    async def _detect_suspicious_vote(
        self,
        competition_id: str,
        fingerprint: str,
        ip_address: Optional[str]
    ) -> Optional[str]:
        """
        Same-device / same-network heuristic.

        Returns a flag reason when earlier votes in this competition from the
        same fingerprint or IP exceed the threshold, else None.
        """
        threshold = self.settings.vote_fraud_threshold
        reasons = []

        device_votes = await self.votes.count_documents({
            "competition_id": competition_id,
            "device_fingerprint": fingerprint
        })
        if device_votes > threshold:
            reasons.append(f"shared_device ({device_votes} prior votes)")

        if ip_address:
            ip_votes = await self.votes.count_documents({
                "competition_id": competition_id,
                "ip_address": ip_address
            })
            if ip_votes > threshold:
                reasons.append(f"shared_ip ({ip_votes} prior votes)")

        return "; ".join(reasons) if reasons else None

    async def flag_vote(self, vote_id: str, flagged: bool, reason: Optional[str] = None) -> Dict[str, Any]:
        """Moderator flag/unflag. Only the flag fields change."""
        update: Dict[str, Any] = {"$set": {"flagged_for_review": flagged, "updated_at": self.clock()}}
        if flagged and reason:
            update["$set"]["flag_reason"] = reason
        elif not flagged:
            update["$unset"] = {"flag_reason": ""}

        vote = await self.votes.find_one_and_update(
            {"_id": parse_object_id(vote_id, "Vote")},
            update,
            return_document=ReturnDocument.AFTER
        )
        if not vote:
            raise NotFoundError("Vote not found")
        return vote

    async def delete_vote(self, vote_id: str) -> Dict[str, Any]:
        """Hard-delete a vote and take it back out of the counters."""
        vote = await self.votes.find_one_and_delete({"_id": parse_object_id(vote_id, "Vote")})
        if not vote:
            raise NotFoundError("Vote not found")

        now = self.clock()
        await self.entries.update_one(
            {"_id": parse_object_id(vote["entry_id"], "Entry"), "votes_count": {"$gt": 0}},
            {"$inc": {"votes_count": -1}, "$set": {"updated_at": now}}
        )
        await self.competitions.update_one(
            {"_id": parse_object_id(vote["competition_id"], "Competition"), "total_votes": {"$gt": 0}},
            {"$inc": {"total_votes": -1}, "$set": {"updated_at": now}}
        )
        logger.info("Vote deleted", vote_id=vote_id, entry_id=vote["entry_id"])
        return vote

    # ==========================================
    # READS
    # ==========================================

    async def list_votes(
        self,
        competition_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        flagged_only: bool = False,
        page: int = 1,
        limit: int = 20,
        sort_order: str = "desc"
    ) -> Dict[str, Any]:
        """
        Moderation queue: votes filtered by competition, entry and flag,
        newest first unless ``sort_order`` is "asc". Each vote carries a
        short summary of its entry and competition.
        """
        query: Dict[str, Any] = {}
        if competition_id:
            query["competition_id"] = competition_id
        if entry_id:
            query["entry_id"] = entry_id
        if flagged_only:
            query["flagged_for_review"] = True

        skip = (page - 1) * limit
        direction = ASCENDING if sort_order == "asc" else DESCENDING
        cursor = self.votes.find(query).sort("created_at", direction).skip(skip).limit(limit)
        votes = await cursor.to_list(length=limit)
        total = await self.votes.count_documents(query)

        entry_oids = list({parse_object_id(vote["entry_id"], "Entry") for vote in votes})
        competition_oids = list({parse_object_id(vote["competition_id"], "Competition") for vote in votes})
        entry_docs = await self.entries.find(
            {"_id": {"$in": entry_oids}}, {"pet_name": 1, "photo_url": 1}
        ).to_list(length=None)
        competition_docs = await self.competitions.find(
            {"_id": {"$in": competition_oids}}, {"date": 1, "status": 1}
        ).to_list(length=None)
        entries = {str(entry["_id"]): entry for entry in entry_docs}
        competitions = {str(competition["_id"]): competition for competition in competition_docs}
        for vote in votes:
            vote["entry"] = entries.get(vote["entry_id"])
            vote["competition"] = competitions.get(vote["competition_id"])

        pages = (total + limit - 1) // limit if limit else 0
        return {
            "votes": votes,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": pages,
                "has_next": page * limit < total,
                "has_prev": page > 1
            }
        }

    async def get_entry_details(
        self,
        competition_id: str,
        entry_id: str,
        user_id: str,
        device_fingerprint: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        An active entry with the caller's vote status for it.

        ``can_vote`` mirrors what cast_vote would accept. A device that
        already voted in the competition is reported but does not block,
        since device matches only flag votes.
        """
        competition = await self.competitions.find_one(
            {"_id": parse_object_id(competition_id, "Competition")}
        )
        if not competition:
            raise NotFoundError("Competition not found")
        competition_id = str(competition["_id"])

        entry = await self.entries.find_one({
            "_id": parse_object_id(entry_id, "Entry"),
            "competition_id": competition_id,
            "status": EntryStatus.ACTIVE.value
        })
        if not entry:
            raise NotFoundError("Entry not found")
        entry_id = str(entry["_id"])

        now = self.clock()
        competition_active = (
            competition["status"] == CompetitionStatus.ACTIVE.value
            and competition["start_time"] <= now < competition["end_time"]
        )
        is_own_entry = entry["user_id"] == user_id
        voted_for_entry = await self.votes.find_one(
            {"competition_id": competition_id, "entry_id": entry_id, "user_id": user_id}
        ) is not None
        user_has_voted = voted_for_entry or await self.votes.find_one(
            {"competition_id": competition_id, "user_id": user_id}
        ) is not None
        device_has_voted = False
        if device_fingerprint:
            device_has_voted = await self.votes.find_one(
                {"competition_id": competition_id, "device_fingerprint": device_fingerprint}
            ) is not None

        can_vote = False
        if not competition_active:
            message = "Competition is not active"
        elif is_own_entry:
            message = "You cannot vote for your own entry"
        elif voted_for_entry:
            message = "You have voted for this entry"
        else:
            can_vote = True
            message = "You can vote for this entry"

        return {
            "entry": entry,
            "can_vote": can_vote,
            "has_voted": voted_for_entry,
            "vote_status_message": message,
            "vote_status": {
                "competition_active": competition_active,
                "is_own_entry": is_own_entry,
                "user_has_voted": user_has_voted,
                "device_has_voted": device_has_voted,
                "voted_for_this_entry": voted_for_entry
            }
        }
