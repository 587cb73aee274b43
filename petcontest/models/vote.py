from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime


class DeviceInfo(BaseModel):
    """Device details sent by the mobile client"""
    device_id: str
    device_model: Optional[str] = None
    os_version: Optional[str] = None
    platform: Literal["android", "ios"]


class VoteCreate(BaseModel):
    """Schema for casting a vote"""
    device_info: DeviceInfo
    device_fingerprint: Optional[str] = Field(None, description="SHA256 fingerprint computed on the device")


class VoteFlagUpdate(BaseModel):
    """Moderator flag/unflag request"""
    flagged: bool
    reason: Optional[str] = Field(None, max_length=500)


class VoteInDB(BaseModel):
    """Schema for vote stored in database"""
    competition_id: str
    entry_id: str
    user_id: str
    device_fingerprint: str
    device_info: Optional[DeviceInfo] = None
    ip_address: Optional[str] = None
    is_valid: bool = True
    flagged_for_review: bool = False
    flag_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
