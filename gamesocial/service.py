"""
Relationship Service
Friend request state machine, follow and block rules on top of the store.

Every mutation checks its rules and writes inside one store transaction, then
invalidates the cache for both participants and notifies other processes.
Rule violations are raised as ``gamesocial.errors`` types; store failures
surface as StoreUnavailable and are not retried here.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from .crud import profile_to_dict
from .errors import (
    AlreadyFriends,
    Blocked,
    Conflict,
    Forbidden,
    InvalidRequest,
    InvalidTarget,
    NotFound,
    PreviouslyDeclined,
    RequestAlreadyPending,
    SocialError,
)
from .models import utcnow
from .models.blocks import Block
from .models.follows import Follow
from .models.friendships import Friendship
from .store import DEFAULT_LIMIT, RelationshipStore
from .visibility import RelationshipState

logger = logging.getLogger(__name__)

BLOCK_DURATIONS = {
    '24h': timedelta(hours=24),
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
    'permanent': None,
}
MAX_BULK_TARGETS = 50


def block_expiry(duration: Optional[str] = None, expires_at: Optional[datetime] = None) -> Optional[datetime]:
    """Expiry for a new block; None means permanent"""
    if duration is not None and expires_at is not None:
        raise InvalidRequest('Give either a block duration or an expiry time, not both')
    if duration is not None:
        if duration not in BLOCK_DURATIONS:
            raise InvalidRequest(f'Block duration must be one of {", ".join(BLOCK_DURATIONS)}')
        delta = BLOCK_DURATIONS[duration]
        return utcnow() + delta if delta is not None else None
    if expires_at is None:
        return None
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at <= utcnow():
        raise InvalidRequest('Block expiry must be in the future')
    return expires_at


def friend_request_to_dict(edge: Friendship) -> Dict:
    return {
        'id': edge.id,
        'requester_id': edge.requester_id,
        'recipient_id': edge.recipient_id,
        'status': edge.status,
        'message': edge.message,
        'created_at': edge.created_at,
        'accepted_at': edge.accepted_at,
    }


class RelationshipService:

    def __init__(self, store: Optional[RelationshipStore] = None, cache=None,
                 notifier: Optional[Callable[..., Awaitable]] = None):
        self.store = store or RelationshipStore()
        self.cache = cache
        # async callable taking the affected user ids, e.g. InvalidationBridge.publish
        self.notifier = notifier

    async def publish_change(self, *user_ids: int):
        if self.cache is not None:
            for user_id in user_ids:
                self.cache.invalidate_user(user_id)
        if self.notifier is not None:
            try:
                await self.notifier(*user_ids)
            except Exception as e:
                logger.warning(f"Change notification for users {user_ids} failed: {str(e)}")

    @staticmethod
    def _existing_edge_error(edge: Friendship, requester_id: int) -> SocialError:
        if edge.status == 'accepted':
            return AlreadyFriends()
        if edge.status == 'pending':
            if edge.requester_id != requester_id:
                return RequestAlreadyPending('This user has already sent you a friend request')
            return RequestAlreadyPending()
        if edge.status == 'declined':
            return PreviouslyDeclined()
        return Blocked('Cannot send a friend request to this user')

    # friend requests
    async def send_request(self, requester_id: int, recipient_id: int, message: Optional[str] = None) -> Friendship:
        if requester_id == recipient_id:
            raise InvalidTarget('You cannot send a friend request to yourself')
        async with self.store.transaction() as s:
            if await self.store.get_active_block(requester_id, recipient_id, session=s):
                raise Blocked('Cannot send a friend request to this user')
            existing = await self.store.get_friend_edge(requester_id, recipient_id, session=s)
            if existing is not None:
                raise self._existing_edge_error(existing, requester_id)
            edge = await self.store.create_friend_request(requester_id, recipient_id, message, session=s)
        logger.info(f"Friend request {edge.id} sent from {requester_id} to {recipient_id}")
        await self.publish_change(requester_id, recipient_id)
        return edge

    async def _pending_request(self, s, request_id: int) -> Friendship:
        edge = await self.store.get_friend_edge_by_id(request_id, session=s, for_update=True)
        if edge is None:
            raise NotFound('Friend request not found')
        return edge

    async def accept_request(self, request_id: int, user_id: int) -> Friendship:
        async with self.store.transaction() as s:
            edge = await self._pending_request(s, request_id)
            if edge.recipient_id != user_id:
                raise Forbidden('Only the recipient can accept this friend request')
            if edge.status != 'pending':
                raise Conflict(f'Friend request is already {edge.status}')
            edge = await self.store.update_friend_status(edge.id, 'accepted', expected_status='pending', session=s)
        logger.info(f"Friend request {edge.id} accepted by {user_id}")
        await self.publish_change(edge.requester_id, edge.recipient_id)
        return edge

    async def decline_request(self, request_id: int, user_id: int) -> Friendship:
        """Decline removes the request so it can be sent again later"""
        async with self.store.transaction() as s:
            edge = await self._pending_request(s, request_id)
            if edge.recipient_id != user_id:
                raise Forbidden('Only the recipient can decline this friend request')
            if edge.status != 'pending':
                raise Conflict(f'Friend request is already {edge.status}')
            await self.store.delete_friend_edge(edge.id, session=s)
        logger.info(f"Friend request {edge.id} declined by {user_id}")
        await self.publish_change(edge.requester_id, edge.recipient_id)
        return edge

    async def cancel_request(self, request_id: int, user_id: int) -> Friendship:
        async with self.store.transaction() as s:
            edge = await self._pending_request(s, request_id)
            if edge.requester_id != user_id:
                raise Forbidden('Only the sender can cancel this friend request')
            if edge.status != 'pending':
                raise Conflict(f'Friend request is already {edge.status}')
            await self.store.delete_friend_edge(edge.id, session=s)
        logger.info(f"Friend request {edge.id} cancelled by {user_id}")
        await self.publish_change(edge.requester_id, edge.recipient_id)
        return edge

    async def remove_friend(self, user_id: int, friend_id: int) -> Friendship:
        if user_id == friend_id:
            raise InvalidTarget('You cannot unfriend yourself')
        async with self.store.transaction() as s:
            edge = await self.store.get_friend_edge(user_id, friend_id, session=s)
            if edge is None:
                raise NotFound('Friendship not found')
            if edge.status != 'accepted':
                raise Forbidden('You are not friends with this user')
            await self.store.delete_friend_edge(edge.id, session=s)
        logger.info(f"Friendship between {user_id} and {friend_id} removed")
        await self.publish_change(user_id, friend_id)
        return edge

    # follows
    async def follow(self, follower_id: int, followee_id: int) -> Follow:
        if follower_id == followee_id:
            raise InvalidTarget('You cannot follow yourself')
        async with self.store.transaction() as s:
            if await self.store.get_active_block(follower_id, followee_id, session=s):
                raise Blocked('Cannot follow this user')
            if await self.store.get_follow(follower_id, followee_id, session=s) is not None:
                raise Conflict('You are already following this user')
            follow = await self.store.create_follow(follower_id, followee_id, session=s)
        logger.info(f"User {follower_id} followed {followee_id}")
        await self.publish_change(follower_id, followee_id)
        return follow

    async def unfollow(self, follower_id: int, followee_id: int) -> Follow:
        if follower_id == followee_id:
            raise InvalidTarget('You cannot unfollow yourself')
        async with self.store.transaction() as s:
            follow = await self.store.get_follow(follower_id, followee_id, session=s)
            if follow is None:
                raise NotFound('You are not following this user')
            await self.store.delete_follow(follower_id, followee_id, session=s)
        logger.info(f"User {follower_id} unfollowed {followee_id}")
        await self.publish_change(follower_id, followee_id)
        return follow

    async def _bulk(self, action, actor_id: int, target_ids: Iterable[int]) -> Dict:
        targets = list(dict.fromkeys(target_ids))
        if not targets:
            raise InvalidRequest('No users given')
        if len(targets) > MAX_BULK_TARGETS:
            raise InvalidRequest(f'At most {MAX_BULK_TARGETS} users can be processed at once')
        report = {'succeeded': [], 'failed': []}
        for target_id in targets:
            try:
                await action(actor_id, target_id)
            except SocialError as e:
                report['failed'].append({'user_id': target_id, 'code': e.code, 'detail': e.message})
            else:
                report['succeeded'].append(target_id)
        return report

    async def bulk_follow(self, follower_id: int, target_ids: Iterable[int]) -> Dict:
        return await self._bulk(self.follow, follower_id, target_ids)

    async def bulk_unfollow(self, follower_id: int, target_ids: Iterable[int]) -> Dict:
        return await self._bulk(self.unfollow, follower_id, target_ids)

    # blocks
    async def block(self, blocker_id: int, blocked_id: int, reason: Optional[str] = None,
                    duration: Optional[str] = None, expires_at: Optional[datetime] = None) -> Block:
        """Block a user, dropping any friendship and follows between the pair"""
        if blocker_id == blocked_id:
            raise InvalidTarget('You cannot block yourself')
        expires_at = block_expiry(duration, expires_at)
        async with self.store.transaction() as s:
            await self.store.delete_expired_block(blocker_id, blocked_id, session=s)
            if await self.store.get_block(blocker_id, blocked_id, session=s) is not None:
                raise Conflict('User is already blocked')
            await self.store.delete_friend_edge_between(blocker_id, blocked_id, session=s)
            await self.store.delete_follows_between(blocker_id, blocked_id, session=s)
            block = await self.store.create_block(blocker_id, blocked_id, reason, expires_at, session=s)
        logger.info(f"User {blocker_id} blocked {blocked_id}")
        await self.publish_change(blocker_id, blocked_id)
        return block

    async def unblock(self, blocker_id: int, blocked_id: int) -> Block:
        if blocker_id == blocked_id:
            raise InvalidTarget('You cannot unblock yourself')
        async with self.store.transaction() as s:
            block = await self.store.get_block(blocker_id, blocked_id, session=s)
            if block is None:
                raise NotFound('User is not blocked')
            await self.store.delete_block(blocker_id, blocked_id, session=s)
        logger.info(f"User {blocker_id} unblocked {blocked_id}")
        await self.publish_change(blocker_id, blocked_id)
        return block

    # status queries
    async def get_relationship(self, viewer_id: int, subject_id: int) -> RelationshipState:
        """Everything the viewer needs to know about the subject, in one read"""
        if viewer_id == subject_id:
            return RelationshipState(viewer_id=viewer_id, subject_id=subject_id)
        async with self.store.transaction() as s:
            blocks = await self.store.get_active_blocks(viewer_id, subject_id, session=s)
            if blocks:
                return RelationshipState(
                    viewer_id=viewer_id,
                    subject_id=subject_id,
                    blocked_by_viewer=any(b.blocker_id == viewer_id for b in blocks),
                    blocked_by_subject=any(b.blocker_id == subject_id for b in blocks),
                )
            edge = await self.store.get_friend_edge(viewer_id, subject_id, session=s)
            following = await self.store.get_follow(viewer_id, subject_id, session=s)
            followed_by = await self.store.get_follow(subject_id, viewer_id, session=s)
        return RelationshipState(
            viewer_id=viewer_id,
            subject_id=subject_id,
            friend_status=edge.status if edge else None,
            friend_request_id=edge.id if edge else None,
            request_outgoing=bool(edge and edge.requester_id == viewer_id),
            friends_since=edge.accepted_at if edge else None,
            is_following=following is not None,
            is_followed_by=followed_by is not None,
        )

    async def are_friends(self, user_a: int, user_b: int) -> bool:
        if user_a == user_b:
            return False
        async with self.store.transaction() as s:
            edge = await self.store.get_friend_edge(user_a, user_b, session=s)
            if edge is None or edge.status != 'accepted':
                return False
            return not await self.store.get_active_blocks(user_a, user_b, session=s)

    async def is_following(self, follower_id: int, followee_id: int) -> bool:
        return await self.store.get_follow(follower_id, followee_id) is not None

    async def is_blocked(self, user_a: int, user_b: int) -> bool:
        """True when an unexpired block exists in either direction"""
        return await self.store.get_active_block(user_a, user_b) is not None

    # lists
    async def get_friends_list_with_profiles(self, user_id: int, limit: int = DEFAULT_LIMIT,
                                             offset: int = 0) -> List[Dict]:
        rows = await self.store.list_friend_edges_with_profiles(user_id, 'accepted', limit=limit, offset=offset)
        friends = []
        for edge, user in rows:
            entry = profile_to_dict(user)
            entry['friendship_id'] = edge.id
            entry['friendship_date'] = edge.accepted_at
            friends.append(entry)
        return friends

    async def _requests(self, user_id: int, direction: str, limit: int, offset: int) -> List[Dict]:
        rows = await self.store.list_friend_edges_with_profiles(
            user_id, 'pending', direction=direction, limit=limit, offset=offset
        )
        requests = []
        for edge, user in rows:
            entry = friend_request_to_dict(edge)
            entry['user'] = profile_to_dict(user)
            requests.append(entry)
        return requests

    async def get_pending_requests(self, user_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0) -> List[Dict]:
        """Requests waiting for this user's answer"""
        return await self._requests(user_id, 'incoming', limit, offset)

    async def get_sent_requests(self, user_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0) -> List[Dict]:
        return await self._requests(user_id, 'outgoing', limit, offset)

    async def _follows(self, user_id: int, direction: str, limit: int, offset: int) -> List[Dict]:
        rows = await self.store.list_follows_with_profiles(user_id, direction, limit=limit, offset=offset)
        result = []
        for follow, user in rows:
            entry = profile_to_dict(user)
            entry['followed_at'] = follow.created_at
            result.append(entry)
        return result

    async def get_followers(self, user_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0) -> List[Dict]:
        return await self._follows(user_id, 'followers', limit, offset)

    async def get_following(self, user_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0) -> List[Dict]:
        return await self._follows(user_id, 'following', limit, offset)

    async def get_blocked_users(self, user_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0) -> List[Dict]:
        rows = await self.store.list_blocks_with_profiles(user_id, limit=limit, offset=offset)
        result = []
        for block, user in rows:
            entry = profile_to_dict(user)
            entry['reason'] = block.reason
            entry['blocked_at'] = block.created_at
            entry['expires_at'] = block.expires_at
            result.append(entry)
        return result

    async def get_social_stats(self, user_id: int) -> Dict:
        async with self.store.transaction() as s:
            return {
                'user_id': user_id,
                'friends_count': await self.store.count_friend_edges(user_id, 'accepted', session=s),
                'followers_count': await self.store.count_follows(user_id, 'followers', session=s),
                'following_count': await self.store.count_follows(user_id, 'following', session=s),
                'pending_requests_count': await self.store.count_friend_edges(
                    user_id, 'pending', direction='incoming', session=s
                ),
            }

    async def get_mutual_following(self, user_a: int, user_b: int, limit: int = 10) -> List[Dict]:
        users = await self.store.list_mutual_following(user_a, user_b, limit=limit)
        return [profile_to_dict(user) for user in users]
