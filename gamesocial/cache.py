"""
Social Cache
In-process read-through / write-through cache in front of the relationship
service and profile reads.

Entries are keyed ``<kind>:<id>``, expire after a per-kind TTL, carry tags
(``user:<id>`` for everything that belongs to a user) for bulk invalidation,
and are evicted least-recently-accessed first once the entry or memory budget
is exceeded. One instance is built per process and handed to its consumers.
"""
import asyncio
import logging
import os
import pickle
import sys
import threading
import time
from collections import OrderedDict, deque
from contextlib import suppress
from dataclasses import dataclass, field, asdict
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from prometheus_client import Counter, Gauge

logger = logging.getLogger(__name__)

CACHE_EVENTS = Counter('social_cache_events_total', 'Social cache events', ['event'])
CACHE_EVICTIONS = Counter('social_cache_evictions_total', 'Social cache evictions', ['reason'])
CACHE_ENTRIES = Gauge('social_cache_entries', 'Entries held by the social cache')

# seconds
DEFAULT_TTLS = {
    'profile': 5 * 60,
    'relationship': 60,
    'friends': 2 * 60,
    'followers': 3 * 60,
    'following': 3 * 60,
    'friend_requests': 30,
    'social_stats': 5 * 60,
}

USER_SCOPED_KINDS = ('profile', 'friends', 'followers', 'following', 'friend_requests', 'social_stats')
WARM_KINDS = USER_SCOPED_KINDS

# version slot bumped by clear(), part of every load snapshot
_ALL = '*'


def user_tag(user_id) -> str:
    return f'user:{user_id}'


def make_key(kind: str, key) -> str:
    return f'{kind}:{key}'


def relationship_key(viewer_id, subject_id) -> str:
    return f'{viewer_id}:{subject_id}'


def default_tags(kind: str, key) -> Set[str]:
    tags = {kind}
    if kind == 'relationship':
        viewer_id, _, subject_id = str(key).partition(':')
        tags.update({user_tag(viewer_id), user_tag(subject_id), make_key(kind, key)})
    elif kind in USER_SCOPED_KINDS:
        tags.add(user_tag(key))
    return tags


def _consume_exception(future: asyncio.Future):
    # a load whose callers all went away must not log "exception never retrieved"
    if not future.cancelled():
        future.exception()


@dataclass
class CacheConfig:
    max_entries: int = 1000
    max_memory_bytes: Optional[int] = None
    default_ttl: float = 5 * 60
    ttls: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TTLS))
    event_buffer_size: int = 1000
    response_time_window: int = 100
    cleanup_interval: float = 60

    @classmethod
    def from_env(cls) -> 'CacheConfig':
        ttls = dict(DEFAULT_TTLS)
        for kind in DEFAULT_TTLS:
            value = os.getenv(f'CACHE_TTL_{kind.upper()}')
            if value:
                ttls[kind] = float(value)
        max_memory = os.getenv('CACHE_MAX_MEMORY_BYTES')
        return cls(
            max_entries=int(os.getenv('CACHE_MAX_ENTRIES', '1000')),
            max_memory_bytes=int(max_memory) if max_memory else None,
            ttls=ttls,
            event_buffer_size=int(os.getenv('CACHE_EVENT_BUFFER', '1000')),
            cleanup_interval=float(os.getenv('CACHE_CLEANUP_INTERVAL', '60')),
        )

    def ttl_for(self, kind: str) -> float:
        return self.ttls.get(kind, self.default_ttl)


@dataclass
class CacheEntry:
    key: str
    value: Any
    inserted_at: float
    ttl: float
    last_accessed: float
    access_count: int = 0
    tags: frozenset = frozenset()
    size: int = 0

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


@dataclass(frozen=True)
class CacheEvent:
    type: str  # hit, miss, set, evict, clear
    key: Optional[str]
    timestamp: float
    reason: Optional[str] = None  # capacity, ttl, manual (evict only)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class _Loader:
    fetch: Callable[[Any], Awaitable[Any]]
    ttl: Optional[float] = None
    tags: Optional[Callable[[Any], Iterable[str]]] = None
    # tags read off the loaded value, e.g. users embedded in a list
    value_tags: Optional[Callable[[Any], Iterable[str]]] = None


class SocialCache:
    """
    Read-through cache with TTL expiry, tag invalidation and LRU eviction.

    A lock guards the entry map, the tag index and the counters. Concurrent
    misses on the same key share one load. A load that overlaps an
    invalidation of one of its tags, or a set() of its key, still answers its
    callers but is not stored, so a stale read can never outlive a mutation.
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or CacheConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._tag_index: Dict[str, Set[str]] = {}
        self._loaders: Dict[str, _Loader] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self._versions: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._events = deque(maxlen=self.config.event_buffer_size)
        self._response_times = deque(maxlen=self.config.response_time_window)
        self._memory = 0
        self._stats = {'hits': 0, 'misses': 0, 'sets': 0, 'evictions': 0}
        self._cleanup_task: Optional[asyncio.Task] = None

    def register_loader(self, kind: str, fetch: Callable[[Any], Awaitable[Any]], ttl: Optional[float] = None,
                        tags: Optional[Callable[[Any], Iterable[str]]] = None,
                        value_tags: Optional[Callable[[Any], Iterable[str]]] = None):
        """
        Source used by get(kind, id) on a miss.
        ``tags`` derives extra tags from the key, ``value_tags`` from the loaded value.
        """
        self._loaders[kind] = _Loader(fetch=fetch, ttl=ttl, tags=tags, value_tags=value_tags)

    def has_loader(self, kind: str) -> bool:
        return kind in self._loaders

    # reads
    async def get(self, kind: str, key, loader: Optional[Callable[[], Awaitable[Any]]] = None,
                  ttl: Optional[float] = None, tags: Optional[Iterable[str]] = None) -> Any:
        """Return the cached value, loading and storing it on a miss"""
        cache_key = make_key(kind, key)
        started = time.perf_counter()
        try:
            with self._lock:
                value, hit = self._lookup(cache_key)
                if hit:
                    return value
                future = self._inflight.get(cache_key)
                if future is None:
                    future = self._start_load(kind, key, cache_key, loader, ttl, tags)
            return await asyncio.shield(future)
        finally:
            self._response_times.append(time.perf_counter() - started)

    def peek(self, kind: str, key) -> Any:
        """Cached value without loading, touching LRU order or counting metrics"""
        with self._lock:
            entry = self._entries.get(make_key(kind, key))
            if entry is None or entry.expired(self._clock()):
                return None
            return entry.value

    # writes
    def set(self, kind: str, key, value: Any, ttl: Optional[float] = None, tags: Optional[Iterable[str]] = None):
        """Seed an entry directly, e.g. with the fresh value after a mutation"""
        cache_key = make_key(kind, key)
        with self._lock:
            self._bump(cache_key)
            self._store(cache_key, kind, value, self._ttl_for(kind, ttl), self._tags_for(kind, key, tags))

    def delete(self, kind: str, key) -> bool:
        cache_key = make_key(kind, key)
        with self._lock:
            self._bump(cache_key)
            if cache_key not in self._entries:
                return False
            self._remove(cache_key, 'manual')
            return True

    def invalidate_tag(self, tag: str) -> int:
        """Drop every entry carrying ``tag``; returns how many were dropped"""
        with self._lock:
            self._bump(tag)
            keys = list(self._tag_index.get(tag, ()))
            for cache_key in keys:
                self._remove(cache_key, 'manual')
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries for tag {tag}")
        return len(keys)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        return sum(self.invalidate_tag(tag) for tag in tags)

    def invalidate_user(self, user_id) -> int:
        return self.invalidate_tag(user_tag(user_id))

    def clear(self) -> int:
        with self._lock:
            self._bump(_ALL)
            removed = len(self._entries)
            self._entries.clear()
            self._tag_index.clear()
            self._memory = 0
            self._emit('clear', None)
            CACHE_ENTRIES.set(0)
        return removed

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, entry in self._entries.items() if entry.expired(now)]
            for cache_key in expired:
                self._remove(cache_key, 'ttl')
        return len(expired)

    # warming
    async def warm(self, user_id, kinds: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """
        Best-effort preload of a user's profile and relationship lists.
        Never raises: failures are logged and reported per kind.
        """
        kinds = [kind for kind in (kinds or WARM_KINDS) if kind in self._loaders]
        results = await asyncio.gather(*(self.get(kind, user_id) for kind in kinds), return_exceptions=True)
        report = {}
        for kind, result in zip(kinds, results):
            if isinstance(result, BaseException):
                logger.warning(f"Cache warm failed for {make_key(kind, user_id)}: {str(result)}")
                report[kind] = False
            else:
                report[kind] = True
        return report

    async def warm_many(self, user_ids: Iterable) -> Dict[Any, Dict[str, bool]]:
        user_ids = list(user_ids)
        reports = await asyncio.gather(*(self.warm(user_id) for user_id in user_ids))
        return dict(zip(user_ids, reports))

    # observability
    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            hits, misses = self._stats['hits'], self._stats['misses']
            total = hits + misses
            timings = list(self._response_times)
            return {
                **self._stats,
                'size': len(self._entries),
                'memory_bytes': self._memory,
                'hit_rate': hits / total if total else 0.0,
                'miss_rate': misses / total if total else 0.0,
                'average_response_time_ms': (sum(timings) / len(timings) * 1000) if timings else 0.0,
                'inflight': len(self._inflight),
            }

    def recent_events(self, limit: Optional[int] = None) -> List[Dict]:
        """Oldest first"""
        with self._lock:
            events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return [event.to_dict() for event in events]

    def reset_stats(self):
        with self._lock:
            for name in self._stats:
                self._stats[name] = 0
            self._response_times.clear()
            self._events.clear()

    def entry(self, kind: str, key) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(make_key(kind, key))

    def __len__(self) -> int:
        return len(self._entries)

    # background expiry sweep
    def start_cleanup(self, interval: Optional[float] = None):
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.ensure_future(self._cleanup_loop(interval or self.config.cleanup_interval))

    async def stop_cleanup(self):
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    async def _cleanup_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            removed = self.purge_expired()
            if removed:
                logger.debug(f"Purged {removed} expired cache entries")

    # internals, all called with self._lock held
    def _ttl_for(self, kind: str, ttl: Optional[float]) -> float:
        if ttl is not None:
            return ttl
        registered = self._loaders.get(kind)
        if registered is not None and registered.ttl is not None:
            return registered.ttl
        return self.config.ttl_for(kind)

    def _tags_for(self, kind: str, key, extra: Optional[Iterable[str]]) -> Set[str]:
        tags = default_tags(kind, key)
        registered = self._loaders.get(kind)
        if registered is not None and registered.tags is not None:
            tags.update(registered.tags(key))
        if extra:
            tags.update(extra)
        return tags

    def _lookup(self, cache_key: str):
        entry = self._entries.get(cache_key)
        now = self._clock()
        if entry is not None and entry.expired(now):
            self._remove(cache_key, 'ttl')
            entry = None
        if entry is None:
            self._stats['misses'] += 1
            self._emit('miss', cache_key)
            return None, False
        entry.last_accessed = now
        entry.access_count += 1
        self._entries.move_to_end(cache_key)
        self._stats['hits'] += 1
        self._emit('hit', cache_key)
        return entry.value, True

    def _start_load(self, kind, key, cache_key, loader, ttl, tags) -> asyncio.Future:
        value_tags = None
        if loader is None:
            registered = self._loaders.get(kind)
            if registered is None:
                raise LookupError(f'No loader registered for cache kind {kind!r}')
            loader = lambda: registered.fetch(key)  # noqa: E731
            value_tags = registered.value_tags
        entry_tags = self._tags_for(kind, key, tags)
        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        self._inflight[cache_key] = future
        # whole map, since tags read off the value are unknown until the load ends
        snapshot = dict(self._versions)
        task = asyncio.ensure_future(
            self._load(cache_key, loader, self._ttl_for(kind, ttl), entry_tags, snapshot, future, kind, value_tags)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return future

    async def _load(self, cache_key, loader, ttl, tags, snapshot, future, kind, value_tags=None):
        try:
            value = await loader()
            if value_tags is not None:
                tags = tags | set(value_tags(value))
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            logger.warning(f"Cache load failed for key {cache_key}: {str(e)}")
            future.set_exception(e)
        else:
            with self._lock:
                if all(self._versions.get(name, 0) == snapshot.get(name, 0) for name in (_ALL, cache_key, *tags)):
                    self._store(cache_key, kind, value, ttl, tags)
                else:
                    logger.debug(f"Discarding load for {cache_key}: invalidated while in flight")
            future.set_result(value)
        finally:
            with self._lock:
                if self._inflight.get(cache_key) is future:
                    del self._inflight[cache_key]
                if not self._inflight:
                    self._versions.clear()

    def _bump(self, name: str):
        # versions only matter to loads already in flight
        if self._inflight:
            self._versions[name] = self._versions.get(name, 0) + 1

    def _store(self, cache_key: str, kind: str, value: Any, ttl: float, tags: Set[str]):
        now = self._clock()
        previous = self._entries.pop(cache_key, None)
        if previous is not None:
            self._unindex(previous)
            self._memory -= previous.size
        entry = CacheEntry(
            key=cache_key,
            value=value,
            inserted_at=now,
            ttl=ttl,
            last_accessed=now,
            access_count=previous.access_count if previous is not None else 0,
            tags=frozenset(tags),
            size=self._estimate_size(value),
        )
        self._entries[cache_key] = entry
        for tag in entry.tags:
            self._tag_index.setdefault(tag, set()).add(cache_key)
        self._memory += entry.size
        self._stats['sets'] += 1
        self._emit('set', cache_key)
        self._enforce_budget()
        CACHE_ENTRIES.set(len(self._entries))

    def _enforce_budget(self):
        max_memory = self.config.max_memory_bytes
        while self._entries and (
            len(self._entries) > self.config.max_entries
            or (max_memory is not None and self._memory > max_memory)
        ):
            least_recent = next(iter(self._entries))
            self._remove(least_recent, 'capacity')

    def _remove(self, cache_key: str, reason: str):
        entry = self._entries.pop(cache_key, None)
        if entry is None:
            return
        self._unindex(entry)
        self._memory -= entry.size
        self._stats['evictions'] += 1
        self._emit('evict', cache_key, reason)
        CACHE_EVICTIONS.labels(reason=reason).inc()
        CACHE_ENTRIES.set(len(self._entries))

    def _unindex(self, entry: CacheEntry):
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(entry.key)
            if not keys:
                del self._tag_index[tag]

    def _emit(self, event_type: str, cache_key: Optional[str], reason: Optional[str] = None):
        self._events.append(CacheEvent(type=event_type, key=cache_key, timestamp=time.time(), reason=reason))
        CACHE_EVENTS.labels(event=event_type).inc()

    @staticmethod
    def _estimate_size(value: Any) -> int:
        try:
            return len(pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL))
        except (pickle.PicklingError, TypeError, AttributeError):
            return sys.getsizeof(value)
