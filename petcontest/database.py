from typing import Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from petcontest.config import settings

logger = structlog.get_logger(__name__)


class Database:
    client: Optional[AsyncIOMotorClient] = None

    @classmethod
    async def connect_db(cls):
        """Connect to MongoDB"""
        cls.client = AsyncIOMotorClient(settings.mongodb_url)
        logger.info("Connected to MongoDB", database=settings.database_name)

        # Create indexes
        await create_indexes(cls.get_db())

    @classmethod
    async def close_db(cls):
        """Close MongoDB connection"""
        if cls.client:
            cls.client.close()
            cls.client = None
            logger.info("Disconnected from MongoDB")

    @classmethod
    def get_db(cls) -> Optional[AsyncIOMotorDatabase]:
        """Get database instance"""
        if cls.client is None:
            return None
        return cls.client[settings.database_name]


async def create_indexes(db: AsyncIOMotorDatabase):
    """
    Create the indexes the competition core relies on.

    The unique indexes are load-bearing: they are the arbiter for
    one-competition-per-date, one-entry-per-user and one-vote-per-entry,
    and for at-most-once ledger credits.
    """
    # Competitions
    try:
        await db.competitions.create_index([("date", ASCENDING)], unique=True)
        await db.competitions.create_index([("date", ASCENDING), ("status", ASCENDING)])
        await db.competitions.create_index([("start_time", ASCENDING), ("end_time", ASCENDING)])
        await db.competitions.create_index([("status", ASCENDING), ("end_time", ASCENDING)])
        logger.info("Created indexes on competitions")
    except PyMongoError as e:
        logger.warning("Indexes on competitions may already exist", error=str(e))

    # Entries
    try:
        await db.competition_entries.create_index(
            [("competition_id", ASCENDING), ("user_id", ASCENDING)],
            unique=True
        )
        await db.competition_entries.create_index(
            [("competition_id", ASCENDING), ("votes_count", DESCENDING), ("created_at", ASCENDING)]
        )
        logger.info("Created indexes on competition_entries")
    except PyMongoError as e:
        logger.warning("Indexes on competition_entries may already exist", error=str(e))

    # Votes
    try:
        await db.competition_votes.create_index(
            [("competition_id", ASCENDING), ("entry_id", ASCENDING), ("user_id", ASCENDING)],
            unique=True
        )
        await db.competition_votes.create_index([("device_fingerprint", ASCENDING), ("competition_id", ASCENDING)])
        await db.competition_votes.create_index([("ip_address", ASCENDING), ("competition_id", ASCENDING)])
        logger.info("Created indexes on competition_votes")
    except PyMongoError as e:
        logger.warning("Indexes on competition_votes may already exist", error=str(e))

    # Ledger
    try:
        await db.wallets.create_index([("user_id", ASCENDING)], unique=True)
        await db.token_transactions.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        await db.token_transactions.create_index([("transaction_id", ASCENDING)], unique=True)
        await db.token_transactions.create_index([("idempotency_key", ASCENDING)], unique=True, sparse=True)
        logger.info("Created indexes on wallets and token_transactions")
    except PyMongoError as e:
        logger.warning("Indexes on ledger collections may already exist", error=str(e))
