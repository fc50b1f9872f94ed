"""
Reference batch loader honoring the loader contract.

Within one logical request:
    - every key requested before the dispatch boundary is fetched in a
      single batch of distinct keys
    - results are routed back to each caller by key
    - a key without a matching record resolves to NOT_FOUND rather than
      being omitted
    - results are cached per loader instance; create one loader per request
      so nothing is shared across requests

The dispatch boundary is the next event-loop iteration: loads issued by
tasks that run in the same iteration (e.g. under ``asyncio.gather``) are
coalesced.

Example:
    >>> async def fetch_users(ids):
    ...     rows = await db.users_by_ids(ids)
    ...     return {row.id: row for row in rows}
    >>> loader = BatchLoader(fetch_users)
    >>> alice, bob = await asyncio.gather(loader.load(1), loader.load(2))
"""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Hashable,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
)

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _NotFound:
    """Explicit result for a key with no matching record."""

    _instance: Optional[_NotFound] = None

    def __new__(cls) -> _NotFound:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()

BatchFn = Callable[[List[K]], Awaitable[Mapping[K, V]]]


class BatchLoader(Generic[K, V]):
    """Deduplicating, batching, caching key loader.

    Attributes:
        batch_fn: Coroutine function taking the list of distinct keys and
            returning a mapping of key to record; missing keys are not found
        max_batch_size: Split dispatches into batches of at most this size
        batch_count: Number of batch calls made so far
    """

    def __init__(self, batch_fn: BatchFn, max_batch_size: Optional[int] = None) -> None:
        if max_batch_size is not None and max_batch_size <= 0:
            raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")
        self.batch_fn = batch_fn
        self.max_batch_size = max_batch_size
        self.batch_count = 0
        self._cache: Dict[K, asyncio.Future] = {}
        self._queue: List[Tuple[K, asyncio.Future]] = []
        self._scheduled = False
        self._tasks: set = set()

    def load(self, key: K) -> asyncio.Future:
        """Request one key. Await the returned future for the record or NOT_FOUND."""
        future = self._cache.get(key)
        if future is not None:
            return future

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._cache[key] = future
        self._queue.append((key, future))
        if not self._scheduled:
            self._scheduled = True
            loop.call_soon(self._dispatch)
        return future

    async def load_many(self, keys: List[K]) -> List[Any]:
        """Request several keys; results are in the order of ``keys``."""
        return list(await asyncio.gather(*(self.load(k) for k in keys)))

    def prime(self, key: K, value: V) -> None:
        """Seed the cache with a known record (no-op if already present)."""
        if key in self._cache:
            return
        future = asyncio.get_running_loop().create_future()
        future.set_result(value)
        self._cache[key] = future

    def clear(self, key: Optional[K] = None) -> None:
        """Drop one cached key, or the whole cache."""
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)

    def _dispatch(self) -> None:
        pending, self._queue = self._queue, []
        self._scheduled = False
        size = self.max_batch_size or len(pending)
        for start in range(0, len(pending), size):
            task = asyncio.ensure_future(self._run(pending[start:start + size]))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, pending: List[Tuple[K, asyncio.Future]]) -> None:
        self.batch_count += 1
        keys = [key for key, _ in pending]
        logger.debug(f"Dispatching batch of {len(keys)} keys")
        try:
            results = await self.batch_fn(keys)
        except Exception as e:
            # Failed keys are evicted so a later load retries them
            for key, future in pending:
                if self._cache.get(key) is future:
                    del self._cache[key]
                if not future.done():
                    future.set_exception(e)
            return

        for key, future in pending:
            if not future.done():
                future.set_result(results.get(key, NOT_FOUND))
