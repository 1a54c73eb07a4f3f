"""Read-through cache for individual, union and tree lookups.

Population is asynchronous through a bounded write queue; invalidation is
synchronous with the mutation that caused it.
"""
from __future__ import annotations

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from .models import Individual, TreeNode, Union

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


class CacheKind(str, Enum):
    """Entity kinds held in the cache."""
    INDIVIDUAL = "individual"
    UNION = "union"
    TREE = "tree"


# =============================================================================
# Cache backends
# =============================================================================


class CacheBackend(ABC):
    """Cache collaborator contract. Best effort, no transactions."""

    @abstractmethod
    def get(self, kind: CacheKind, key: int) -> Any | None:
        ...

    @abstractmethod
    def set(self, kind: CacheKind, key: int, value: Any, ttl: int) -> None:
        ...

    @abstractmethod
    def delete(self, kind: CacheKind, key: int) -> None:
        ...


class MemoryCache(CacheBackend):
    """In-process TTL cache."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[tuple[CacheKind, int], tuple[float, Any]] = {}

    def get(self, kind: CacheKind, key: int) -> Any | None:
        with self._lock:
            entry = self._entries.get((kind, key))
            if entry is None:
                return None
            expires_at, value = entry
            if time.monotonic() >= expires_at:
                del self._entries[(kind, key)]
                return None
            return value

    def set(self, kind: CacheKind, key: int, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[(kind, key)] = (time.monotonic() + ttl, value)

    def delete(self, kind: CacheKind, key: int) -> None:
        with self._lock:
            self._entries.pop((kind, key), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# Background writer
# =============================================================================


@dataclass
class _PendingWrite:
    kind: CacheKind
    key: int
    value: Any
    generation: int


class CacheWriter:
    """Bounded queue of cache writes drained by one background task.

    When the queue is full the write is dropped; a later read simply misses.
    The worker exits once the queue is empty and is restarted on demand.
    """

    def __init__(
        self,
        backend: CacheBackend,
        ttl: int,
        is_current: Callable[[CacheKind, int, int], bool],
        release: Callable[[CacheKind, int], None],
        max_pending: int = 1000,
    ) -> None:
        self.backend = backend
        self.ttl = ttl
        self._is_current = is_current
        self._release = release
        self._queue: asyncio.Queue[_PendingWrite] = asyncio.Queue(maxsize=max_pending)
        self._task: asyncio.Task | None = None
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, kind: CacheKind, key: int, value: Any, generation: int) -> bool:
        try:
            self._queue.put_nowait(_PendingWrite(kind, key, value, generation))
        except asyncio.QueueFull:
            self.dropped += 1
            self._release(kind, key)
            logger.warning("cache.write_dropped", kind=kind.value, key=key, pending=self.pending)
            return False

        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
        return True

    async def _run(self) -> None:
        while True:
            try:
                write = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                if self._is_current(write.kind, write.key, write.generation):
                    self.backend.set(write.kind, write.key, write.value, self.ttl)
                else:
                    logger.debug("cache.write_stale", kind=write.kind.value, key=write.key)
            except Exception as e:
                logger.warning("cache.write_failed", kind=write.kind.value, key=write.key, error=str(e))
            finally:
                self._release(write.kind, write.key)
                self._queue.task_done()
            await asyncio.sleep(0)

    async def drain(self) -> None:
        """Wait until every queued write has been applied or discarded."""
        await self._queue.join()

    async def aclose(self) -> None:
        if self._task is not None and not self._task.done():
            await self.drain()
            self._task.cancel()
        self._task = None


# =============================================================================
# Facade
# =============================================================================


class CacheFacade:
    """Read-through cache used by the engine.

    Values are stored as JSON-compatible dicts so the facade never hands out
    shared mutable records. A key with a load or queued write in flight
    carries a generation counter; invalidation bumps it so that write is
    discarded instead of resurrecting stale data. The counter is dropped once
    nothing is in flight for the key.
    """

    def __init__(self, backend: CacheBackend, ttl: int = 300, max_pending: int = 1000) -> None:
        self.backend = backend
        self.ttl = ttl
        # (kind, key) -> [generation, writes in flight]
        self._generations: dict[tuple[CacheKind, int], list[int]] = {}
        self.writer = CacheWriter(backend, ttl, self._is_current, self._release, max_pending=max_pending)
        self.hits = 0
        self.misses = 0

    @property
    def tracked_keys(self) -> int:
        return len(self._generations)

    def _begin(self, kind: CacheKind, key: int) -> int:
        entry = self._generations.setdefault((kind, key), [0, 0])
        entry[1] += 1
        return entry[0]

    def _release(self, kind: CacheKind, key: int) -> None:
        entry = self._generations.get((kind, key))
        if entry is None:
            return
        entry[1] -= 1
        if entry[1] <= 0:
            del self._generations[(kind, key)]

    def _is_current(self, kind: CacheKind, key: int, generation: int) -> bool:
        entry = self._generations.get((kind, key))
        return entry is not None and entry[0] == generation

    def _read(self, kind: CacheKind, key: int) -> Any | None:
        try:
            return self.backend.get(kind, key)
        except Exception as e:
            logger.warning("cache.read_failed", kind=kind.value, key=key, error=str(e))
            return None

    async def _read_through(
        self,
        kind: CacheKind,
        key: int,
        model: type[M],
        load: Callable[[], Awaitable[M]],
        wrap: Callable[[dict[str, Any]], Any] = lambda payload: payload,
        unwrap: Callable[[Any], dict[str, Any] | None] = lambda cached: cached,
    ) -> M:
        cached = self._read(kind, key)
        payload = unwrap(cached) if cached is not None else None
        if payload is not None:
            self.hits += 1
            logger.debug("cache.hit", kind=kind.value, key=key)
            return model.model_validate(payload)

        self.misses += 1
        generation = self._begin(kind, key)
        try:
            value = await load()
            payload = wrap(value.model_dump(mode="json"))
        except BaseException:
            self._release(kind, key)
            raise
        self.writer.submit(kind, key, payload, generation)
        return value

    async def individual(self, individual_id: int, load: Callable[[], Awaitable[Individual]]) -> Individual:
        return await self._read_through(CacheKind.INDIVIDUAL, individual_id, Individual, load)

    async def union(self, union_id: int, load: Callable[[], Awaitable[Union]]) -> Union:
        return await self._read_through(CacheKind.UNION, union_id, Union, load)

    async def tree(
        self,
        root_id: int,
        generations: int,
        build: Callable[[], Awaitable[TreeNode]],
    ) -> TreeNode:
        # A tree cached for a different depth is a miss
        def unwrap(cached: Any) -> dict[str, Any] | None:
            if isinstance(cached, dict) and cached.get("generations") == generations:
                return cached.get("tree")
            return None

        return await self._read_through(
            CacheKind.TREE,
            root_id,
            TreeNode,
            build,
            wrap=lambda payload: {"generations": generations, "tree": payload},
            unwrap=unwrap,
        )

    # ---------------------------- Invalidation ----------------------------

    def invalidate(self, kind: CacheKind, keys: Iterable[int]) -> None:
        for key in set(keys):
            entry = self._generations.get((kind, key))
            if entry is not None:
                entry[0] += 1
            try:
                self.backend.delete(kind, key)
            except Exception as e:
                logger.warning("cache.delete_failed", kind=kind.value, key=key, error=str(e))

    def invalidate_individuals(self, individual_ids: Iterable[int]) -> None:
        ids = {i for i in individual_ids if i is not None}
        self.invalidate(CacheKind.INDIVIDUAL, ids)
        self.invalidate(CacheKind.TREE, ids)
        if ids:
            logger.debug("cache.invalidated", kind="individual", keys=sorted(ids))

    def invalidate_unions(self, union_ids: Iterable[int]) -> None:
        ids = {i for i in union_ids if i is not None}
        self.invalidate(CacheKind.UNION, ids)
        if ids:
            logger.debug("cache.invalidated", kind="union", keys=sorted(ids))

    async def drain(self) -> None:
        await self.writer.drain()

    async def aclose(self) -> None:
        await self.writer.aclose()
