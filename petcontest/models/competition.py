from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum


class CompetitionStatus(str, Enum):
    """
    Competition status - State Machine

    State Transitions:
    - UPCOMING -> ACTIVE (auto at start_time, hourly job)
    - ACTIVE -> COMPLETED (end_time passed and prizes distributed, nightly job)
    - UPCOMING -> CANCELLED (admin)
    - ACTIVE -> CANCELLED (admin)

    COMPLETED and CANCELLED are terminal.
    """
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


WINNER_POSITIONS = ("first", "second", "third")


class WinnerSlot(BaseModel):
    """One podium place"""
    entry_id: str
    user_id: str
    votes: int = 0
    prize: int = 0


class CompetitionWinners(BaseModel):
    first: Optional[WinnerSlot] = None
    second: Optional[WinnerSlot] = None
    third: Optional[WinnerSlot] = None


class CompetitionCreate(BaseModel):
    """Schema for admin-created competitions"""
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="Competition day (YYYY-MM-DD)")
    entry_fee: int = Field(..., ge=0)
    start_time: datetime
    end_time: datetime
    entry_start_time: datetime
    entry_end_time: datetime

    @model_validator(mode="after")
    def check_windows(self):
        if not self.start_time < self.end_time:
            raise ValueError("start_time must be before end_time")
        if not self.entry_start_time < self.entry_end_time:
            raise ValueError("entry_start_time must be before entry_end_time")
        if not self.entry_end_time < self.start_time:
            raise ValueError("entry_end_time must be before start_time")
        return self


class CompetitionInDB(BaseModel):
    """Schema for competition stored in database"""
    model_config = ConfigDict(use_enum_values=True)

    date: str
    status: CompetitionStatus = CompetitionStatus.UPCOMING
    entry_fee: int = Field(..., ge=0)
    prize_pool: int = 0
    start_time: datetime
    end_time: datetime
    entry_start_time: datetime
    entry_end_time: datetime

    # Statistics (denormalized, maintained with $inc)
    total_entries: int = 0
    total_votes: int = 0
    pooled_entry_ids: List[str] = Field(default_factory=list)  # entries whose fee is in prize_pool

    # Results
    winners: CompetitionWinners = Field(default_factory=CompetitionWinners)
    prizes_distributed: bool = False
    distribution_started_at: Optional[datetime] = None
    distribution_plan: Optional[List[Dict[str, Any]]] = None
    completed_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime
    updated_at: datetime
