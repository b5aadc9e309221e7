from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

from .users import UserSummaryOut


class BlockIn(BaseModel):
    user_id: int
    reason: Optional[str] = Field(None, max_length=500)
    duration: Optional[Literal['24h', '7d', '30d', 'permanent']] = None
    expires_at: Optional[datetime] = None


class BlockOut(BaseModel):
    id: int
    blocker_id: int
    blocked_id: int
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BlockedUserOut(UserSummaryOut):
    reason: Optional[str] = None
    blocked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
