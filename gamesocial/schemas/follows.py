from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class FollowOut(BaseModel):
    id: int
    follower_id: int
    followee_id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BulkFollowIn(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)
    action: str = Field('follow', pattern='^(follow|unfollow)$')


class BulkFailureOut(BaseModel):
    user_id: int
    code: str
    detail: str


class BulkFollowOut(BaseModel):
    succeeded: List[int]
    failed: List[BulkFailureOut]
