import asyncio
import json
import logging
import os
from contextlib import suppress
from typing import Any, Dict, Optional, Set

from .cache import SocialCache

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = os.getenv('BRIDGE_CHANNEL_PREFIX', 'social:user:')
WARM_ON_INVALIDATE = os.getenv('BRIDGE_WARM_ON_INVALIDATE', 'false').lower() in ('1', 'true', 'yes')


class InvalidationBridge:
    """
    Redis pub/sub link between app instances for relationship changes.

    Mutations publish on ``social:user:<id>`` for every affected user; every
    instance (the publisher included) drops that user's cache entries when the
    message arrives. Delivery is at-least-once from the cache's point of view:
    duplicates only cost a miss, and after a lost connection the whole cache
    is cleared because messages may have been missed meanwhile.
    """

    def __init__(self, cache: SocialCache, redis=None, channel_prefix: Optional[str] = None,
                 warm_on_invalidate: Optional[bool] = None, initial_backoff: float = 0.5,
                 max_backoff: float = 30.0):
        self.cache = cache
        self.redis = redis
        self.channel_prefix = channel_prefix or CHANNEL_PREFIX
        self.warm_on_invalidate = WARM_ON_INVALIDATE if warm_on_invalidate is None else warm_on_invalidate
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.listener_task: Optional[asyncio.Task] = None
        self.connected = False
        self.reconnects = 0
        self._warm_tasks: Set[asyncio.Task] = set()

    def channel_for(self, user_id) -> str:
        return f'{self.channel_prefix}{user_id}'

    async def publish(self, *user_ids: int) -> int:
        """Announce that these users' relationship data changed"""
        if self.redis is None:
            return 0
        published = 0
        for user_id in dict.fromkeys(user_ids):
            message = json.dumps({'type': 'relationship_changed', 'user_id': user_id})
            await self.redis.publish(self.channel_for(user_id), message)
            published += 1
        return published

    def handle_message(self, message: Dict[str, Any]) -> Optional[int]:
        """Invalidate the user a pub/sub message points at; returns that id"""
        channel = message.get('channel')
        if isinstance(channel, bytes):
            channel = channel.decode('utf-8', errors='replace')
        if not channel or not channel.startswith(self.channel_prefix):
            logger.warning(f"Ignoring invalidation message on unexpected channel {channel!r}")
            return None
        try:
            user_id = int(channel[len(self.channel_prefix):])
        except ValueError:
            logger.warning(f"Ignoring invalidation message with malformed user id on {channel!r}")
            return None
        removed = self.cache.invalidate_user(user_id)
        logger.debug(f"Bridge invalidated {removed} cache entries for user {user_id}")
        if self.warm_on_invalidate:
            task = asyncio.ensure_future(self.cache.warm(user_id))
            self._warm_tasks.add(task)
            task.add_done_callback(self._warm_tasks.discard)
        return user_id

    async def run(self):
        """Listen until cancelled, reconnecting with exponential backoff"""
        backoff = self.initial_backoff
        lost = False
        while True:
            pubsub = None
            try:
                pubsub = self.redis.pubsub()
                await pubsub.psubscribe(f'{self.channel_prefix}*')
                if lost:
                    cleared = self.cache.clear()
                    self.reconnects += 1
                    logger.info(f"Invalidation bridge reconnected, cleared {cleared} cache entries")
                self.connected = True
                lost = False
                backoff = self.initial_backoff
                while True:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message and message.get('type') in ('pmessage', 'message'):
                        self.handle_message(message)
            except asyncio.CancelledError:
                self.connected = False
                raise
            except Exception as e:
                self.connected = False
                lost = True
                logger.warning(f"Invalidation bridge connection lost: {str(e)}; retrying in {backoff}s")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.max_backoff)
            finally:
                if pubsub is not None:
                    try:
                        await pubsub.aclose()
                    except Exception as e:
                        logger.debug(f"Closing pub/sub failed: {str(e)}")

    def start(self):
        if self.redis is None:
            logger.warning("Redis not available, cross-instance cache invalidation disabled")
            return
        if self.listener_task is None or self.listener_task.done():
            self.listener_task = asyncio.ensure_future(self.run())

    async def stop(self):
        tasks = list(self._warm_tasks)
        if self.listener_task is not None:
            tasks.append(self.listener_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self.listener_task = None
