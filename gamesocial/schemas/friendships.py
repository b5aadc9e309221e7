from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from .users import UserSummaryOut


class FriendRequestIn(BaseModel):
    recipient_id: int
    message: Optional[str] = Field(None, max_length=500)


class FriendRequestOut(BaseModel):
    id: int
    requester_id: int
    recipient_id: int
    status: str
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FriendRequestWithUserOut(FriendRequestOut):
    # the other side of the request
    user: UserSummaryOut
