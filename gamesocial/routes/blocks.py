from typing import List
from fastapi import APIRouter, Depends
from ..schemas.blocks import BlockIn, BlockOut, BlockedUserOut
from ..schemas.users import ActionOkOut
from ..auth import get_current_user
from ..dependencies import get_service, pagination

router = APIRouter()


@router.post('', response_model=BlockOut)
async def block_user(
    payload: BlockIn,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    return await service.block(
        current_user['id'],
        payload.user_id,
        reason=payload.reason,
        duration=payload.duration,
        expires_at=payload.expires_at
    )


@router.get('', response_model=List[BlockedUserOut])
async def list_blocked(
    page: dict = Depends(pagination),
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    return await service.get_blocked_users(current_user['id'], **page)


@router.delete('/{user_id}', response_model=ActionOkOut)
async def unblock_user(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    service=Depends(get_service)
):
    await service.unblock(current_user['id'], user_id)
    return {'ok': True, 'message': 'User unblocked'}
