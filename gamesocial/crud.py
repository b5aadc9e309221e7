import re
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .errors import Conflict, NotFound
from .models import AsyncSessionLocal
from .models.users import User

USERNAME_RE = re.compile(r'^[A-Za-z0-9_]{3,20}$')
PRIVACY_LEVELS = ('public', 'friends', 'private')
PROFILE_FIELDS = ('display_name', 'bio', 'privacy_level', 'privacy_settings', 'gaming_preferences')


def validate_username(username: str) -> str:
    if not USERNAME_RE.match(username or ''):
        raise ValueError('username must be 3-20 characters of letters, digits or underscore')
    return username


def validate_privacy_level(level: str) -> str:
    if level not in PRIVACY_LEVELS:
        raise ValueError(f'privacy level must be one of {", ".join(PRIVACY_LEVELS)}')
    return level


def profile_to_dict(user: User) -> Dict:
    return {
        'id': user.id,
        'username': user.username,
        'display_name': user.display_name,
        'bio': user.bio,
        'privacy_level': user.privacy_level,
        'privacy_settings': dict(user.privacy_settings or {}),
        'gaming_preferences': dict(user.gaming_preferences or {}),
        'created_at': user.created_at,
        'updated_at': user.updated_at,
    }


class ProfileStore:
    """Profile reads and owner writes"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def create_profile(self, username: str, display_name: Optional[str] = None, bio: Optional[str] = None,
                             privacy_level: str = 'public', privacy_settings: Optional[Dict] = None,
                             gaming_preferences: Optional[Dict] = None) -> User:
        validate_username(username)
        validate_privacy_level(privacy_level)
        for level in (privacy_settings or {}).values():
            validate_privacy_level(level)
        async with self.session_factory() as session:
            user = User(
                username=username,
                display_name=display_name or username,
                bio=bio,
                privacy_level=privacy_level,
                privacy_settings=privacy_settings or {},
                gaming_preferences=gaming_preferences or {},
            )
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise Conflict('Username is already taken') from e
            await session.refresh(user)
            return user

    async def get_profile(self, user_id: int) -> Optional[User]:
        async with self.session_factory() as session:
            q = await session.execute(select(User).where(User.id == user_id))
            return q.scalars().first()

    async def get_profile_by_username(self, username: str) -> Optional[User]:
        async with self.session_factory() as session:
            q = await session.execute(select(User).where(User.username == username))
            return q.scalars().first()

    async def get_profiles(self, user_ids: Iterable[int]) -> List[User]:
        ids = list(user_ids)
        if not ids:
            return []
        async with self.session_factory() as session:
            q = await session.execute(select(User).where(User.id.in_(ids)))
            return list(q.scalars().all())

    async def update_profile(self, user_id: int, **changes) -> User:
        """Apply owner edits; unknown fields are rejected"""
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f'cannot update fields: {", ".join(sorted(unknown))}')
        if 'privacy_level' in changes:
            validate_privacy_level(changes['privacy_level'])
        for level in (changes.get('privacy_settings') or {}).values():
            validate_privacy_level(level)
        async with self.session_factory() as session:
            q = await session.execute(select(User).where(User.id == user_id))
            user = q.scalars().first()
            if not user:
                raise NotFound('User not found')
            for field, value in changes.items():
                setattr(user, field, value)
            await session.commit()
            await session.refresh(user)
            return user
