from fastapi import APIRouter, Depends
from ..schemas.follows import FollowOut, BulkFollowIn, BulkFollowOut
from ..schemas.users import ActionOkOut
from ..auth import get_current_user
from ..dependencies import get_service

router = APIRouter()


# declared before /{user_id} so "bulk" is not parsed as an id
@router.post('/bulk', response_model=BulkFollowOut)
async def bulk_follow(
    payload: BulkFollowIn,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    if payload.action == 'unfollow':
        return await service.bulk_unfollow(current_user['id'], payload.user_ids)
    return await service.bulk_follow(current_user['id'], payload.user_ids)


@router.post('/{user_id}', response_model=FollowOut)
async def follow_user(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    return await service.follow(current_user['id'], user_id)


@router.delete('/{user_id}', response_model=ActionOkOut)
async def unfollow_user(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    await service.unfollow(current_user['id'], user_id)
    return {'ok': True, 'message': 'Unfollowed'}
