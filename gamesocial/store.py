"""
Relationship Store
Durable CRUD over friendships, follows and blocks on top of SQLAlchemy.

Every method takes an optional ``session``: when given, the call joins that
session's transaction, so the service can compose several writes atomically.
Without one the call runs in its own short transaction. The store owns the
uniqueness rules (one friendship row per unordered pair, one follow per
ordered pair, one block per ordered pair) but not the cross-relation rules.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update, delete, func, or_, and_
from sqlalchemy.exc import IntegrityError, OperationalError, InterfaceError

from .errors import NotFound, Conflict, StoreUnavailable
from .models import AsyncSessionLocal, utcnow
from .models.users import User
from .models.friendships import Friendship
from .models.follows import Follow
from .models.blocks import Block

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20


def ordered_pair(user_a: int, user_b: int) -> Tuple[int, int]:
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


class RelationshipStore:

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal

    @asynccontextmanager
    async def transaction(self):
        """Yield a session whose work commits (or rolls back) as one unit"""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except IntegrityError as e:
            raise Conflict(f'Uniqueness constraint violated: {e.orig}') from e
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error(f"Relationship store failure: {str(e)}")
            raise StoreUnavailable() from e

    @asynccontextmanager
    async def _use(self, session):
        if session is not None:
            yield session
        else:
            async with self.transaction() as own_session:
                yield own_session

    async def _flush(self, session, conflict_message: str):
        try:
            await session.flush()
        except IntegrityError as e:
            raise Conflict(conflict_message) from e

    # users
    async def user_exists(self, user_id: int, session=None) -> bool:
        async with self._use(session) as s:
            res = await s.execute(select(User.id).where(User.id == user_id))
            return res.scalars().first() is not None

    async def require_users(self, *user_ids: int, session=None):
        async with self._use(session) as s:
            res = await s.execute(select(User.id).where(User.id.in_(user_ids)))
            found = set(res.scalars().all())
            for user_id in user_ids:
                if user_id not in found:
                    raise NotFound(f'User {user_id} not found')

    # friendships
    async def create_friend_request(self, requester_id: int, recipient_id: int,
                                    message: Optional[str] = None, session=None) -> Friendship:
        low, high = ordered_pair(requester_id, recipient_id)
        async with self._use(session) as s:
            await self.require_users(requester_id, recipient_id, session=s)
            edge = Friendship(
                requester_id=requester_id,
                recipient_id=recipient_id,
                user_low=low,
                user_high=high,
                status='pending',
                message=message,
            )
            s.add(edge)
            await self._flush(s, 'A friendship already exists between these users')
            return edge

    async def get_friend_edge(self, user_a: int, user_b: int, session=None) -> Optional[Friendship]:
        low, high = ordered_pair(user_a, user_b)
        async with self._use(session) as s:
            res = await s.execute(
                select(Friendship).where(Friendship.user_low == low, Friendship.user_high == high)
            )
            return res.scalars().first()

    async def get_friend_edge_by_id(self, edge_id: int, session=None, for_update: bool = False) -> Optional[Friendship]:
        stmt = select(Friendship).where(Friendship.id == edge_id)
        if for_update:
            stmt = stmt.with_for_update()
        async with self._use(session) as s:
            res = await s.execute(stmt)
            return res.scalars().first()

    async def update_friend_status(self, edge_id: int, status: str,
                                   expected_status: Optional[str] = None, session=None) -> Friendship:
        """Compare-and-swap the status of a friendship row"""
        now = utcnow()
        values = {'status': status, 'updated_at': now}
        if status == 'accepted':
            values['accepted_at'] = now
        stmt = update(Friendship).where(Friendship.id == edge_id).execution_options(synchronize_session=False)
        if expected_status is not None:
            stmt = stmt.where(Friendship.status == expected_status)
        async with self._use(session) as s:
            res = await s.execute(stmt.values(**values))
            if res.rowcount == 0:
                current = await self.get_friend_edge_by_id(edge_id, session=s)
                if current is None:
                    raise NotFound('Friend request not found')
                raise Conflict(f'Friend request is {current.status}, expected {expected_status}')
            edge = await s.get(Friendship, edge_id, populate_existing=True)
            return edge

    async def delete_friend_edge(self, edge_id: int, session=None) -> None:
        async with self._use(session) as s:
            res = await s.execute(delete(Friendship).execution_options(synchronize_session=False).where(Friendship.id == edge_id))
            if res.rowcount == 0:
                raise NotFound('Friendship not found')

    async def delete_friend_edge_between(self, user_a: int, user_b: int, session=None) -> int:
        low, high = ordered_pair(user_a, user_b)
        async with self._use(session) as s:
            res = await s.execute(
                delete(Friendship).execution_options(synchronize_session=False).where(Friendship.user_low == low, Friendship.user_high == high)
            )
            return res.rowcount

    def _friend_edges_query(self, user_id: int, status: str, direction: Optional[str]):
        if direction == 'incoming':
            owner = Friendship.recipient_id == user_id
        elif direction == 'outgoing':
            owner = Friendship.requester_id == user_id
        else:
            owner = or_(Friendship.requester_id == user_id, Friendship.recipient_id == user_id)
        return owner, Friendship.status == status

    async def list_friend_edges(self, user_id: int, status: str = 'accepted', direction: Optional[str] = None,
                                limit: int = DEFAULT_LIMIT, offset: int = 0, session=None) -> List[Friendship]:
        owner, status_clause = self._friend_edges_query(user_id, status, direction)
        newest = Friendship.accepted_at if status == 'accepted' else Friendship.created_at
        stmt = (
            select(Friendship)
            .where(owner, status_clause)
            .order_by(newest.desc(), Friendship.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._use(session) as s:
            res = await s.execute(stmt)
            return list(res.scalars().all())

    async def list_friend_edges_with_profiles(self, user_id: int, status: str = 'accepted',
                                              direction: Optional[str] = None, limit: int = DEFAULT_LIMIT,
                                              offset: int = 0, session=None) -> List[Tuple[Friendship, User]]:
        """Friendship rows joined with the profile of the other participant"""
        owner, status_clause = self._friend_edges_query(user_id, status, direction)
        other = or_(
            and_(Friendship.requester_id == user_id, User.id == Friendship.recipient_id),
            and_(Friendship.recipient_id == user_id, User.id == Friendship.requester_id),
        )
        newest = Friendship.accepted_at if status == 'accepted' else Friendship.created_at
        stmt = (
            select(Friendship, User)
            .join(User, other)
            .where(owner, status_clause)
            .order_by(newest.desc(), Friendship.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._use(session) as s:
            res = await s.execute(stmt)
            return [(row[0], row[1]) for row in res.all()]

    async def count_friend_edges(self, user_id: int, status: str = 'accepted',
                                 direction: Optional[str] = None, session=None) -> int:
        owner, status_clause = self._friend_edges_query(user_id, status, direction)
        async with self._use(session) as s:
            res = await s.execute(select(func.count(Friendship.id)).where(owner, status_clause))
            return res.scalar_one()

    # follows
    async def create_follow(self, follower_id: int, followee_id: int, session=None) -> Follow:
        async with self._use(session) as s:
            await self.require_users(follower_id, followee_id, session=s)
            follow = Follow(follower_id=follower_id, followee_id=followee_id)
            s.add(follow)
            await self._flush(s, 'You are already following this user')
            return follow

    async def get_follow(self, follower_id: int, followee_id: int, session=None) -> Optional[Follow]:
        async with self._use(session) as s:
            res = await s.execute(
                select(Follow).where(Follow.follower_id == follower_id, Follow.followee_id == followee_id)
            )
            return res.scalars().first()

    async def delete_follow(self, follower_id: int, followee_id: int, session=None) -> None:
        async with self._use(session) as s:
            res = await s.execute(
                delete(Follow).execution_options(synchronize_session=False).where(Follow.follower_id == follower_id, Follow.followee_id == followee_id)
            )
            if res.rowcount == 0:
                raise NotFound('You are not following this user')

    async def delete_follows_between(self, user_a: int, user_b: int, session=None) -> int:
        """Remove both directions of follow between a pair"""
        async with self._use(session) as s:
            res = await s.execute(
                delete(Follow).execution_options(synchronize_session=False).where(or_(
                    and_(Follow.follower_id == user_a, Follow.followee_id == user_b),
                    and_(Follow.follower_id == user_b, Follow.followee_id == user_a),
                ))
            )
            return res.rowcount

    async def list_follows_with_profiles(self, user_id: int, direction: str = 'followers',
                                         limit: int = DEFAULT_LIMIT, offset: int = 0,
                                         session=None) -> List[Tuple[Follow, User]]:
        if direction == 'followers':
            owner, other = Follow.followee_id == user_id, User.id == Follow.follower_id
        else:
            owner, other = Follow.follower_id == user_id, User.id == Follow.followee_id
        stmt = (
            select(Follow, User)
            .join(User, other)
            .where(owner)
            .order_by(Follow.created_at.desc(), Follow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._use(session) as s:
            res = await s.execute(stmt)
            return [(row[0], row[1]) for row in res.all()]

    async def count_follows(self, user_id: int, direction: str = 'followers', session=None) -> int:
        owner = Follow.followee_id == user_id if direction == 'followers' else Follow.follower_id == user_id
        async with self._use(session) as s:
            res = await s.execute(select(func.count(Follow.id)).where(owner))
            return res.scalar_one()

    async def list_mutual_following(self, user_a: int, user_b: int, limit: int = 10, session=None) -> List[User]:
        """Users followed by both user_a and user_b"""
        followed_by_b = select(Follow.followee_id).where(Follow.follower_id == user_b)
        stmt = (
            select(User)
            .join(Follow, Follow.followee_id == User.id)
            .where(Follow.follower_id == user_a, User.id.in_(followed_by_b))
            .order_by(Follow.created_at.desc(), User.id.desc())
            .limit(limit)
        )
        async with self._use(session) as s:
            res = await s.execute(stmt)
            return list(res.scalars().all())

    # blocks
    async def create_block(self, blocker_id: int, blocked_id: int, reason: Optional[str] = None,
                           expires_at: Optional[datetime] = None, session=None) -> Block:
        async with self._use(session) as s:
            await self.require_users(blocker_id, blocked_id, session=s)
            block = Block(blocker_id=blocker_id, blocked_id=blocked_id, reason=reason, expires_at=expires_at)
            s.add(block)
            await self._flush(s, 'User is already blocked')
            return block

    async def get_block(self, blocker_id: int, blocked_id: int, session=None) -> Optional[Block]:
        async with self._use(session) as s:
            res = await s.execute(
                select(Block).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
            )
            return res.scalars().first()

    def _active(self, now: datetime):
        return or_(Block.expires_at.is_(None), Block.expires_at > now)

    async def get_active_blocks(self, user_a: int, user_b: int, session=None) -> List[Block]:
        """Unexpired blocks between the pair, in either direction"""
        stmt = select(Block).where(
            or_(
                and_(Block.blocker_id == user_a, Block.blocked_id == user_b),
                and_(Block.blocker_id == user_b, Block.blocked_id == user_a),
            ),
            self._active(utcnow()),
        )
        async with self._use(session) as s:
            res = await s.execute(stmt)
            return list(res.scalars().all())

    async def get_active_block(self, user_a: int, user_b: int, session=None) -> Optional[Block]:
        blocks = await self.get_active_blocks(user_a, user_b, session=session)
        return blocks[0] if blocks else None

    async def delete_block(self, blocker_id: int, blocked_id: int, session=None) -> None:
        async with self._use(session) as s:
            res = await s.execute(
                delete(Block).execution_options(synchronize_session=False).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
            )
            if res.rowcount == 0:
                raise NotFound('User is not blocked')

    async def delete_expired_block(self, blocker_id: int, blocked_id: int, session=None) -> int:
        async with self._use(session) as s:
            res = await s.execute(
                delete(Block).execution_options(synchronize_session=False).where(
                    Block.blocker_id == blocker_id,
                    Block.blocked_id == blocked_id,
                    Block.expires_at.is_not(None),
                    Block.expires_at <= utcnow(),
                )
            )
            return res.rowcount

    async def list_blocks_with_profiles(self, blocker_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0,
                                        session=None) -> List[Tuple[Block, User]]:
        stmt = (
            select(Block, User)
            .join(User, User.id == Block.blocked_id)
            .where(Block.blocker_id == blocker_id, self._active(utcnow()))
            .order_by(Block.created_at.desc(), Block.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._use(session) as s:
            res = await s.execute(stmt)
            return [(row[0], row[1]) for row in res.all()]
