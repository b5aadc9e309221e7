from typing import List
from fastapi import APIRouter, Depends, Query
from ..schemas.users import (
    ProfileCreateIn,
    ProfileUpdateIn,
    ProfileOut,
    ProfileViewOut,
    RelationshipOut,
    FriendOut,
    FollowUserOut,
    SocialStatsOut,
    UserSummaryOut,
)
from ..auth import get_current_user
from ..cache import relationship_key
from ..crud import profile_to_dict
from ..dependencies import get_cache, get_profiles, get_service, pagination, is_first_page
from ..errors import Forbidden, InvalidRequest, NotFound
from ..visibility import RelationshipState, can_view_field, filter_profile

router = APIRouter()

# fields that may not be cleared once set
NON_NULLABLE_FIELDS = ('privacy_level', 'privacy_settings', 'gaming_preferences')


async def _relationship(cache, viewer_id: int, subject_id: int) -> RelationshipState:
    data = await cache.get('relationship', relationship_key(viewer_id, subject_id))
    return RelationshipState.from_dict(data)


async def _visible_profile(cache, viewer_id: int, user_id: int):
    """Profile plus relationship; users who blocked the viewer look nonexistent"""
    profile = await cache.get('profile', user_id)
    state = await _relationship(cache, viewer_id, user_id)
    if state.blocked_by_subject:
        raise NotFound('User not found')
    return profile, state


def _require_visible(profile: dict, state: RelationshipState, field: str):
    if not can_view_field(profile, state, field):
        raise Forbidden(f"This user's {field.replace('_', ' ')} is not visible to you")


async def _summaries(cache, viewer_id: int, entries: List[dict]) -> List[dict]:
    """Apply each listed user's own profile privacy and blocks to their display name"""
    shown = []
    for entry in entries:
        state = await _relationship(cache, viewer_id, entry['id'])
        entry = dict(entry)
        if not can_view_field(entry, state, 'profile'):
            entry['display_name'] = None
        shown.append(entry)
    return shown


@router.post('', response_model=ProfileOut)
async def create_user(
    payload: ProfileCreateIn,
    profiles=Depends(get_profiles),
    cache=Depends(get_cache)
):
    try:
        user = await profiles.create_profile(**payload.model_dump())
    except ValueError as e:
        raise InvalidRequest(str(e))

    # Seed the cache with the new profile
    cache.set('profile', user.id, profile_to_dict(user))

    return user


@router.get('/me', response_model=ProfileOut)
async def get_me(
    current_user: dict = Depends(get_current_user),
    cache=Depends(get_cache)
):
    return await cache.get('profile', current_user['id'])


@router.patch('/me', response_model=ProfileOut)
async def update_me(
    payload: ProfileUpdateIn,
    current_user: dict = Depends(get_current_user),
    profiles=Depends(get_profiles),
    service=Depends(get_service),
    cache=Depends(get_cache)
):
    changes = payload.model_dump(exclude_unset=True)
    for field in NON_NULLABLE_FIELDS:
        if field in changes and changes[field] is None:
            del changes[field]
    try:
        user = await profiles.update_profile(current_user['id'], **changes)
    except ValueError as e:
        raise InvalidRequest(str(e))

    # Drop everything derived from the old profile, then write the fresh one through
    await service.publish_change(user.id)
    cache.set('profile', user.id, profile_to_dict(user))

    return user


@router.get('/{user_id}', response_model=ProfileViewOut)
async def get_user(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    cache=Depends(get_cache)
):
    profile, state = await _visible_profile(cache, current_user['id'], user_id)
    view = filter_profile(profile, state)
    view['relationship'] = state.to_dict()
    return view


@router.get('/{user_id}/relationship', response_model=RelationshipOut)
async def get_relationship(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    cache=Depends(get_cache)
):
    _, state = await _visible_profile(cache, current_user['id'], user_id)
    return state.to_dict()


@router.get('/{user_id}/friends', response_model=List[FriendOut])
async def list_friends(
    user_id: int,
    page: dict = Depends(pagination),
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service),
    cache=Depends(get_cache)
):
    profile, state = await _visible_profile(cache, current_user['id'], user_id)
    _require_visible(profile, state, 'friends_list')
    if is_first_page(page):
        friends = await cache.get('friends', user_id)
    else:
        friends = await service.get_friends_list_with_profiles(user_id, **page)
    return await _summaries(cache, current_user['id'], friends)


@router.get('/{user_id}/followers', response_model=List[FollowUserOut])
async def list_followers(
    user_id: int,
    page: dict = Depends(pagination),
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service),
    cache=Depends(get_cache)
):
    profile, state = await _visible_profile(cache, current_user['id'], user_id)
    _require_visible(profile, state, 'followers_list')
    if is_first_page(page):
        followers = await cache.get('followers', user_id)
    else:
        followers = await service.get_followers(user_id, **page)
    return await _summaries(cache, current_user['id'], followers)


@router.get('/{user_id}/following', response_model=List[FollowUserOut])
async def list_following(
    user_id: int,
    page: dict = Depends(pagination),
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service),
    cache=Depends(get_cache)
):
    profile, state = await _visible_profile(cache, current_user['id'], user_id)
    _require_visible(profile, state, 'following_list')
    if is_first_page(page):
        following = await cache.get('following', user_id)
    else:
        following = await service.get_following(user_id, **page)
    return await _summaries(cache, current_user['id'], following)


@router.get('/{user_id}/mutual-following', response_model=List[UserSummaryOut])
async def list_mutual_following(
    user_id: int,
    limit: int = Query(10, ge=1, le=50),
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service),
    cache=Depends(get_cache)
):
    profile, state = await _visible_profile(cache, current_user['id'], user_id)
    _require_visible(profile, state, 'following_list')
    mutual = await service.get_mutual_following(current_user['id'], user_id, limit=limit)
    return await _summaries(cache, current_user['id'], mutual)


@router.get('/{user_id}/stats', response_model=SocialStatsOut)
async def get_stats(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    cache=Depends(get_cache)
):
    profile, state = await _visible_profile(cache, current_user['id'], user_id)
    _require_visible(profile, state, 'profile')
    return await cache.get('social_stats', user_id)
