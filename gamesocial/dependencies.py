from fastapi import Query, Request

from .cache import SocialCache
from .crud import ProfileStore
from .service import RelationshipService
from .store import DEFAULT_LIMIT


def get_service(request: Request) -> RelationshipService:
    return request.app.state.service


def get_cache(request: Request) -> SocialCache:
    return request.app.state.cache


def get_profiles(request: Request) -> ProfileStore:
    return request.app.state.profiles


def pagination(limit: int = Query(DEFAULT_LIMIT, ge=1, le=100), offset: int = Query(0, ge=0)) -> dict:
    return {'limit': limit, 'offset': offset}


def is_first_page(page: dict) -> bool:
    """Only the default first page of a list is cached"""
    return page['limit'] == DEFAULT_LIMIT and page['offset'] == 0
