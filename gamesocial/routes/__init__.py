from fastapi import APIRouter
from .users import router as users_router
from .friends import router as friends_router
from .follows import router as follows_router
from .blocks import router as blocks_router
from .cache import router as cache_router

router = APIRouter()
router.include_router(users_router, prefix='/users', tags=['users'])
router.include_router(friends_router, prefix='/friends', tags=['friends'])
router.include_router(follows_router, prefix='/follows', tags=['follows'])
router.include_router(blocks_router, prefix='/blocks', tags=['blocks'])
router.include_router(cache_router, prefix='/cache', tags=['cache'])
