"""
Token Transaction Models
Append-only records of token movements caused by competitions
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class TransactionType(str, Enum):
    """Transaction type"""
    COMPETITION_ENTRY = "competition_entry"    # Entry fee paid (negative amount)
    COMPETITION_PRIZE = "competition_prize"    # Prize won
    COMPETITION_REFUND = "competition_refund"  # Entry fee returned


class TransactionStatus(str, Enum):
    """Transaction status"""
    PENDING = "pending"
    COMPLETED = "completed"


class TransactionInDB(BaseModel):
    """Transaction schema in database"""
    model_config = ConfigDict(use_enum_values=True)

    transaction_id: str
    user_id: str
    type: TransactionType
    amount: int  # positive for earn, negative for spend
    status: TransactionStatus = TransactionStatus.COMPLETED
    related_id: Optional[str] = None  # Entry the movement belongs to
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    created_at: datetime
    updated_at: datetime
