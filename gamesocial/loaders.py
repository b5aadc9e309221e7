"""
Read-through sources for each cache kind.

Values stored in the cache are plain dicts and lists so they can be sized and
shared between requests without holding ORM objects.
"""
from .cache import SocialCache, user_tag
from .crud import ProfileStore, profile_to_dict
from .errors import NotFound
from .service import RelationshipService


def listed_user_tags(entries):
    """One user tag per profile embedded in a cached list"""
    return {user_tag(entry['id']) for entry in entries}


def request_user_tags(requests):
    return {user_tag(request['user']['id']) for request in requests['incoming'] + requests['outgoing']}


def register_social_loaders(cache: SocialCache, service: RelationshipService, profiles: ProfileStore):

    async def load_profile(user_id):
        user = await profiles.get_profile(int(user_id))
        if user is None:
            raise NotFound('User not found')
        return profile_to_dict(user)

    async def load_relationship(key):
        viewer_id, _, subject_id = str(key).partition(':')
        state = await service.get_relationship(int(viewer_id), int(subject_id))
        return state.to_dict()

    async def load_friends(user_id):
        return await service.get_friends_list_with_profiles(int(user_id))

    async def load_followers(user_id):
        return await service.get_followers(int(user_id))

    async def load_following(user_id):
        return await service.get_following(int(user_id))

    async def load_friend_requests(user_id):
        return {
            'incoming': await service.get_pending_requests(int(user_id)),
            'outgoing': await service.get_sent_requests(int(user_id)),
        }

    async def load_social_stats(user_id):
        return await service.get_social_stats(int(user_id))

    cache.register_loader('profile', load_profile)
    cache.register_loader('relationship', load_relationship)
    cache.register_loader('friends', load_friends, value_tags=listed_user_tags)
    cache.register_loader('followers', load_followers, value_tags=listed_user_tags)
    cache.register_loader('following', load_following, value_tags=listed_user_tags)
    cache.register_loader('friend_requests', load_friend_requests, value_tags=request_user_tags)
    cache.register_loader('social_stats', load_social_stats)
