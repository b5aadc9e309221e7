"""
Visibility Resolver
Decides which privacy-scoped parts of a profile a viewer may see.

All functions here are pure: they work on a profile dict and a
RelationshipState that was resolved once for the (viewer, subject) pair, so
checking several fields never re-queries the store.
"""
from dataclasses import dataclass, asdict, fields
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Optional


class PrivacyLevel(str, Enum):
    PUBLIC = 'public'
    FRIENDS = 'friends'
    PRIVATE = 'private'


class Relation(str, Enum):
    SELF = 'self'
    BLOCKED = 'blocked'
    FRIENDS = 'friends'
    FOLLOWING = 'following'
    STRANGER = 'stranger'


# field category -> profile attributes it guards
FIELD_CATEGORIES = {
    'profile': ('display_name', 'bio'),
    'gaming_preferences': ('gaming_preferences',),
    'friends_list': (),
    'followers_list': (),
    'following_list': (),
}


@dataclass(frozen=True)
class RelationshipState:
    """Relationship between a viewer and a subject, seen from the viewer"""
    viewer_id: int
    subject_id: int
    friend_status: Optional[str] = None
    friend_request_id: Optional[int] = None
    request_outgoing: bool = False
    friends_since: Optional[datetime] = None
    is_following: bool = False
    is_followed_by: bool = False
    blocked_by_viewer: bool = False
    blocked_by_subject: bool = False

    @property
    def is_self(self) -> bool:
        return self.viewer_id == self.subject_id

    @property
    def is_blocked(self) -> bool:
        return self.blocked_by_viewer or self.blocked_by_subject

    @property
    def are_friends(self) -> bool:
        return not self.is_blocked and self.friend_status == 'accepted'

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['are_friends'] = self.are_friends
        data['is_blocked'] = self.is_blocked
        data['relation'] = resolve_relation(self).value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'RelationshipState':
        """Inverse of to_dict; derived keys are ignored"""
        return cls(**{f.name: data[f.name] for f in fields(cls) if f.name in data})


def resolve_relation(state: RelationshipState) -> Relation:
    if state.is_self:
        return Relation.SELF
    if state.is_blocked:
        return Relation.BLOCKED
    if state.are_friends:
        return Relation.FRIENDS
    if state.is_following:
        return Relation.FOLLOWING
    return Relation.STRANGER


def can_view(relation: Relation, level) -> bool:
    if relation is Relation.SELF:
        return True
    if relation is Relation.BLOCKED:
        return False
    level = PrivacyLevel(level)
    if level is PrivacyLevel.PUBLIC:
        return True
    if level is PrivacyLevel.FRIENDS:
        return relation is Relation.FRIENDS
    return False


def field_level(profile: Dict, field: str) -> str:
    """Per-field override if the subject set one, else the profile-wide level"""
    settings = profile.get('privacy_settings') or {}
    return settings.get(field) or profile.get('privacy_level') or PrivacyLevel.PUBLIC.value


def can_view_field(profile: Dict, state: RelationshipState, field: str) -> bool:
    return can_view(resolve_relation(state), field_level(profile, field))


def visible_fields(profile: Dict, state: RelationshipState,
                   categories: Iterable[str] = tuple(FIELD_CATEGORIES)) -> Dict[str, bool]:
    relation = resolve_relation(state)
    return {field: can_view(relation, field_level(profile, field)) for field in categories}


def filter_profile(profile: Dict, state: RelationshipState) -> Dict:
    """Copy of the profile with hidden attributes blanked out"""
    visibility = visible_fields(profile, state)
    filtered = {
        'id': profile['id'],
        'username': profile['username'],
        'privacy_level': profile.get('privacy_level'),
    }
    for category, attributes in FIELD_CATEGORIES.items():
        for attribute in attributes:
            filtered[attribute] = profile.get(attribute) if visibility[category] else None
    filtered['visibility'] = visibility
    return filtered
