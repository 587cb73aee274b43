from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime
from enum import Enum


class EntryStatus(str, Enum):
    """Competition entry status"""
    ACTIVE = "active"
    CANCELLED = "cancelled"


class EntryCreate(BaseModel):
    """Schema for submitting a competition entry"""
    pet_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    photo_url: str = Field(..., min_length=1)

    @field_validator("pet_name")
    @classmethod
    def strip_pet_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Pet name cannot be empty")
        return value

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else None


class EntryInDB(BaseModel):
    """Schema for entry stored in database"""
    model_config = ConfigDict(use_enum_values=True)

    competition_id: str
    user_id: str
    pet_name: str
    description: Optional[str] = None
    photo_url: str
    status: EntryStatus = EntryStatus.ACTIVE
    votes_count: int = 0
    entry_fee_paid: int  # Snapshot of the fee at submission time
    refunded: bool = False
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    rank: Optional[int] = None  # 1..3, set only when the competition completes
    created_at: datetime
    updated_at: datetime
