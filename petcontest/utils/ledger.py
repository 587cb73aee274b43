"""
Token Ledger
User token balances and the append-only transaction log.
Balance changes are single atomic $inc updates; debits are conditional on
the balance covering the amount, so a wallet never goes negative.
"""
import uuid
from typing import Optional, Tuple, Dict, Any

import structlog
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from petcontest.models.transaction import TransactionInDB, TransactionStatus, TransactionType
from petcontest.utils.clock import utcnow

logger = structlog.get_logger(__name__)


class TokenLedger:
    """
    Ledger collaborator used by the competition services.

    Credits carrying an idempotency key apply once: the transaction row is
    written first under a unique key, then the balance moves under a guard
    on the wallet's applied keys.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.wallets = db.wallets
        self.transactions = db.token_transactions

    @staticmethod
    def generate_transaction_id() -> str:
        """Generate unique transaction ID"""
        return f"TXN_{uuid.uuid4().hex[:16].upper()}"

    async def get_wallet(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get user's wallet"""
        return await self.wallets.find_one({"user_id": user_id})

    async def get_balance(self, user_id: str) -> int:
        """Get user's token balance (0 if the user never held tokens)"""
        wallet = await self.get_wallet(user_id)
        return wallet.get("balance", 0) if wallet else 0

    async def has_transaction(self, idempotency_key: str) -> bool:
        return await self.transactions.find_one({"idempotency_key": idempotency_key}) is not None

    def _build_transaction(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        status: TransactionStatus,
        description: str,
        related_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        idempotency_key: Optional[str]
    ) -> Dict[str, Any]:
        now = utcnow()
        transaction = TransactionInDB(
            transaction_id=self.generate_transaction_id(),
            user_id=user_id,
            type=transaction_type,
            amount=amount,
            status=status,
            related_id=related_id,
            description=description,
            metadata=metadata or {},
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now
        ).model_dump()
        # Sparse unique index: the key must be absent, not null
        if idempotency_key is None:
            del transaction["idempotency_key"]
        return transaction

    async def record_transaction(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str = "",
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        balance_after: Optional[int] = None
    ) -> Dict[str, Any]:
        """Append an immutable, completed transaction record."""
        transaction = self._build_transaction(
            user_id, amount, transaction_type, TransactionStatus.COMPLETED,
            description, related_id, metadata, idempotency_key
        )
        if balance_after is not None:
            transaction["balance_after"] = balance_after
        await self.transactions.insert_one(transaction)
        return transaction

    async def credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str = "",
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None
    ) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        """
        Add tokens to a user's wallet, creating the wallet if needed.

        With an idempotency key the row is claimed first as ``pending``; a
        retry that finds its own pending row finishes it. The wallet keeps
        the keys it has applied, so the balance moves once per key even
        when an attempt fails after the $inc.

        Returns: (success, message, transaction)
        """
        if amount <= 0:
            return False, "Amount must be positive", None

        if not idempotency_key:
            balance_after = await self._increment(user_id, amount)
            transaction = await self.record_transaction(
                user_id, amount, transaction_type, description,
                related_id, metadata, balance_after=balance_after
            )
            return True, "Balance added successfully", transaction

        transaction = self._build_transaction(
            user_id, amount, transaction_type, TransactionStatus.PENDING,
            description, related_id, metadata, idempotency_key
        )
        try:
            await self.transactions.insert_one(transaction)
        except DuplicateKeyError:
            existing = await self.transactions.find_one({"idempotency_key": idempotency_key})
            if existing.get("status") != TransactionStatus.PENDING.value:
                logger.info("Idempotency check: transaction already processed", idempotency_key=idempotency_key)
                return True, "Transaction already processed", existing
            logger.warning(
                "Resuming credit left pending by an earlier attempt",
                idempotency_key=idempotency_key, user_id=existing["user_id"]
            )
            transaction = existing

        balance_after = await self._increment(transaction["user_id"], transaction["amount"], idempotency_key)
        await self.transactions.update_one(
            {"transaction_id": transaction["transaction_id"]},
            {"$set": {
                "status": TransactionStatus.COMPLETED.value,
                "balance_after": balance_after,
                "updated_at": utcnow()
            }}
        )
        transaction["status"] = TransactionStatus.COMPLETED.value
        transaction["balance_after"] = balance_after
        return True, "Balance added successfully", transaction

    async def debit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str = "",
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        record: bool = True
    ) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        """
        Deduct tokens, only if the balance covers the amount.

        With ``record=False`` the balance moves but no transaction row is
        written; the caller records it once the related document exists.

        Returns: (success, message, transaction or {"balance_after": ...})
        """
        if amount <= 0:
            return False, "Amount must be positive", None

        wallet = await self.wallets.find_one_and_update(
            {"user_id": user_id, "balance": {"$gte": amount}},
            {
                "$inc": {"balance": -amount, "total_debited": amount},
                "$set": {"updated_at": utcnow()}
            },
            return_document=ReturnDocument.AFTER
        )
        if wallet is None:
            available = await self.get_balance(user_id)
            return False, f"Insufficient tokens. Required: {amount}, Available: {available}", None

        balance_after = wallet["balance"]
        if not record:
            return True, "Balance deducted successfully", {"balance_after": balance_after}

        transaction = await self.record_transaction(
            user_id, -amount, transaction_type, description,
            related_id, metadata, balance_after=balance_after
        )
        return True, "Balance deducted successfully", transaction

    async def _increment(self, user_id: str, amount: int, idempotency_key: Optional[str] = None) -> int:
        now = utcnow()
        if not idempotency_key:
            wallet = await self.wallets.find_one_and_update(
                {"user_id": user_id},
                {
                    "$inc": {"balance": amount, "total_credited": amount},
                    "$set": {"updated_at": now},
                    "$setOnInsert": {"user_id": user_id, "total_debited": 0, "created_at": now}
                },
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
            return wallet["balance"]

        await self._ensure_wallet(user_id, now)
        wallet = await self.wallets.find_one_and_update(
            {"user_id": user_id, "applied_keys": {"$ne": idempotency_key}},
            {
                "$inc": {"balance": amount, "total_credited": amount},
                "$set": {"updated_at": now},
                "$push": {"applied_keys": idempotency_key}
            },
            return_document=ReturnDocument.AFTER
        )
        if wallet is None:
            # Key already applied by an earlier attempt
            wallet = await self.get_wallet(user_id)
        return wallet["balance"]

    async def _ensure_wallet(self, user_id: str, now) -> None:
        try:
            await self.wallets.update_one(
                {"user_id": user_id},
                {"$setOnInsert": {
                    "user_id": user_id,
                    "balance": 0,
                    "total_credited": 0,
                    "total_debited": 0,
                    "created_at": now,
                    "updated_at": now
                }},
                upsert=True
            )
        except DuplicateKeyError:
            # Created concurrently; the wallet exists either way
            logger.debug("Wallet created concurrently", user_id=user_id)
