from typing import List
from fastapi import APIRouter, Depends
from ..schemas.friendships import FriendRequestIn, FriendRequestOut, FriendRequestWithUserOut
from ..schemas.users import ActionOkOut
from ..auth import get_current_user
from ..dependencies import get_cache, get_service, pagination, is_first_page

router = APIRouter()


@router.post('/requests', response_model=FriendRequestOut)
async def send_friend_request(
    payload: FriendRequestIn,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    return await service.send_request(current_user['id'], payload.recipient_id, payload.message)


@router.get('/requests/incoming', response_model=List[FriendRequestWithUserOut])
async def incoming_requests(
    page: dict = Depends(pagination),
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service),
    cache=Depends(get_cache)
):
    if is_first_page(page):
        requests = await cache.get('friend_requests', current_user['id'])
        return requests['incoming']
    return await service.get_pending_requests(current_user['id'], **page)


@router.get('/requests/outgoing', response_model=List[FriendRequestWithUserOut])
async def outgoing_requests(
    page: dict = Depends(pagination),
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service),
    cache=Depends(get_cache)
):
    if is_first_page(page):
        requests = await cache.get('friend_requests', current_user['id'])
        return requests['outgoing']
    return await service.get_sent_requests(current_user['id'], **page)


@router.post('/requests/{request_id}/accept', response_model=FriendRequestOut)
async def accept_friend_request(
    request_id: int,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    return await service.accept_request(request_id, current_user['id'])


@router.post('/requests/{request_id}/decline', response_model=ActionOkOut)
async def decline_friend_request(
    request_id: int,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    await service.decline_request(request_id, current_user['id'])
    return {'ok': True, 'message': 'Friend request declined'}


@router.delete('/requests/{request_id}', response_model=ActionOkOut)
async def cancel_friend_request(
    request_id: int,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    await service.cancel_request(request_id, current_user['id'])
    return {'ok': True, 'message': 'Friend request cancelled'}


@router.delete('/{user_id}', response_model=ActionOkOut)
async def remove_friend(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    await service.remove_friend(current_user['id'], user_id)
    return {'ok': True, 'message': 'Friend removed'}
