from datetime import datetime
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field

PrivacyLevel = Literal['public', 'friends', 'private']


class ProfileCreateIn(BaseModel):
    username: str = Field(..., pattern=r'^[A-Za-z0-9_]{3,20}$')
    display_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    privacy_level: PrivacyLevel = 'public'
    privacy_settings: Dict[str, PrivacyLevel] = {}
    gaming_preferences: Dict[str, Any] = {}


class ProfileUpdateIn(BaseModel):
    display_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    privacy_level: Optional[PrivacyLevel] = None
    privacy_settings: Optional[Dict[str, PrivacyLevel]] = None
    gaming_preferences: Optional[Dict[str, Any]] = None


class ProfileOut(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    bio: Optional[str] = None
    privacy_level: str
    privacy_settings: Dict[str, str] = {}
    gaming_preferences: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RelationshipOut(BaseModel):
    viewer_id: int
    subject_id: int
    relation: str
    friend_status: Optional[str] = None
    friend_request_id: Optional[int] = None
    request_outgoing: bool = False
    friends_since: Optional[datetime] = None
    are_friends: bool = False
    is_following: bool = False
    is_followed_by: bool = False
    is_blocked: bool = False
    blocked_by_viewer: bool = False
    blocked_by_subject: bool = False


class ProfileViewOut(BaseModel):
    """Profile as seen by a particular viewer; hidden fields are null"""
    id: int
    username: str
    privacy_level: Optional[str] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None
    gaming_preferences: Optional[Dict[str, Any]] = None
    visibility: Dict[str, bool]
    relationship: RelationshipOut


class UserSummaryOut(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None


class FriendOut(UserSummaryOut):
    friendship_id: int
    friendship_date: Optional[datetime] = None


class FollowUserOut(UserSummaryOut):
    followed_at: Optional[datetime] = None


class SocialStatsOut(BaseModel):
    user_id: int
    friends_count: int
    followers_count: int
    following_count: int
    pending_requests_count: int


class ActionOkOut(BaseModel):
    ok: bool = True
    message: Optional[str] = None
