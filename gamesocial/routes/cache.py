from typing import List
from fastapi import APIRouter, Depends, Query
from ..schemas.cache import CacheMetricsOut, CacheEventOut, WarmIn, WarmOut
from ..auth import get_current_user
from ..dependencies import get_cache

router = APIRouter()


@router.get('/metrics', response_model=CacheMetricsOut)
async def cache_metrics(
    current_user: dict = Depends(get_current_user),
    cache=Depends(get_cache)
):
    return cache.metrics()


@router.get('/events', response_model=List[CacheEventOut])
async def cache_events(
    limit: int = Query(100, ge=1, le=1000),
    current_user: dict = Depends(get_current_user),
    cache=Depends(get_cache)
):
    return cache.recent_events(limit)


@router.post('/warm', response_model=WarmOut)
async def warm_cache(
    payload: WarmIn,
    current_user: dict = Depends(get_current_user),
    cache=Depends(get_cache)
):
    user_ids = payload.user_ids or [current_user['id']]
    return {'warmed': await cache.warm_many(user_ids)}
