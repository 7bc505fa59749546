"""
Two-tier TTL cache: process memory in front of the persistent key-value store.

Entries are addressed by (namespace, key). Keys for one borrower are either the
NID itself or start with "<nid>:", so invalidate_identifier can drop every
entry that belongs to a borrower across namespaces.
"""
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple, Type

from pydantic import BaseModel, ValidationError as PydanticValidationError

from chaincredit.core.config import Settings
from chaincredit.core.errors import CacheError
from chaincredit.schemas.borrower import BorrowerRecord
from chaincredit.schemas.credit_score import CreditScoreRecord, EligibilityAssessment
from chaincredit.schemas.loan import LoanRecord
from chaincredit.schemas.network import CacheStats, NetworkStatus

logger = logging.getLogger(__name__)

STORE_PREFIX = "cache:"


@dataclass(frozen=True)
class Namespace:
    name: str
    ttl: float
    model: Optional[Type[BaseModel]] = None
    persistent: bool = True


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl

    def to_json(self) -> bytes:
        data = self.data.model_dump(mode="json") if isinstance(self.data, BaseModel) else self.data
        return json.dumps(
            {
                "data": data,
                "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
                "ttl": int(self.ttl * 1000),
            }
        ).encode()

    @classmethod
    def from_json(cls, raw: bytes, model: Optional[Type[BaseModel]] = None) -> "CacheEntry":
        payload = json.loads(raw)
        data = payload["data"]
        if model is not None:
            data = model.model_validate(data)
        return cls(
            data=data,
            timestamp=datetime.fromisoformat(payload["timestamp"]).timestamp(),
            ttl=float(payload["ttl"]) / 1000,
        )


def default_namespaces(settings: Settings) -> Dict[str, Namespace]:
    short = settings.SHORT_CACHE_TTL_SECONDS
    default = settings.DEFAULT_CACHE_TTL_SECONDS
    return {
        ns.name: ns
        for ns in (
            Namespace("score", short, CreditScoreRecord),
            Namespace("network", short, NetworkStatus),
            Namespace("eligibility", short, EligibilityAssessment, persistent=False),
            Namespace("borrower", default, BorrowerRecord),
            Namespace("loan", default, LoanRecord),
        )
    }


class CacheLayer:
    def __init__(
        self,
        store=None,
        namespaces: Optional[Dict[str, Namespace]] = None,
        default_ttl: float = 300.0,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.namespaces = namespaces or {}
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self.clock = clock

        self._memory: Dict[Tuple[str, str], CacheEntry] = {}
        self._locks: Dict[Tuple[str, str], _KeyLock] = {}
        self._inflight: Dict[Tuple[str, str], asyncio.Future] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self._reset_counters()

    @classmethod
    def from_settings(cls, settings: Settings, store=None, clock: Callable[[], float] = time.time):
        return cls(
            store=store,
            namespaces=default_namespaces(settings),
            default_ttl=settings.DEFAULT_CACHE_TTL_SECONDS,
            sweep_interval=settings.CACHE_SWEEP_SECONDS,
            clock=clock,
        )

    def _reset_counters(self):
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.deduplicated_loads = 0

    def _namespace(self, name: str) -> Namespace:
        ns = self.namespaces.get(name)
        if ns is None:
            ns = Namespace(name, self.default_ttl)
            self.namespaces[name] = ns
        return ns

    @asynccontextmanager
    async def _lock(self, namespace: str, key: str):
        """Serialize work on one key. The lock lives only while someone holds or awaits it."""
        lock_key = (namespace, key)
        holder = self._locks.get(lock_key)
        if holder is None:
            holder = self._locks[lock_key] = _KeyLock()
        holder.users += 1
        try:
            async with holder.lock:
                yield
        finally:
            holder.users -= 1
            if holder.users == 0 and self._locks.get(lock_key) is holder:
                del self._locks[lock_key]

    @staticmethod
    def _store_key(namespace: str, key: str) -> str:
        return f"{STORE_PREFIX}{namespace}:{key}"

    def _uses_store(self, ns: Namespace) -> bool:
        return ns.persistent and self.store is not None

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        ns = self._namespace(namespace)
        async with self._lock(ns.name, key):
            now = self.clock()
            entry = self._memory.get((ns.name, key))
            if entry is not None:
                if not entry.is_expired(now):
                    self.hits += 1
                    return entry.data
                await self._evict(ns, key)
                self.misses += 1
                return None

            if self._uses_store(ns):
                entry = await self._read_stored(ns, key)
                if entry is not None:
                    if not entry.is_expired(now):
                        self._memory[(ns.name, key)] = entry
                        self.hits += 1
                        return entry.data
                    await self._evict(ns, key)

            self.misses += 1
            return None

    async def put(self, namespace: str, key: str, value: Any, ttl: Optional[float] = None):
        ns = self._namespace(namespace)
        entry = CacheEntry(data=value, timestamp=self.clock(), ttl=ttl if ttl is not None else ns.ttl)
        async with self._lock(ns.name, key):
            self._memory[(ns.name, key)] = entry
            if self._uses_store(ns):
                try:
                    await self.store.set(self._store_key(ns.name, key), entry.to_json())
                except (CacheError, TypeError, ValueError) as e:
                    logger.warning(f"Persistent cache write failed for {ns.name}:{key}: {e}")

    async def invalidate(self, namespace: str, key: str) -> bool:
        ns = self._namespace(namespace)
        async with self._lock(ns.name, key):
            removed = self._memory.pop((ns.name, key), None) is not None
            if self._uses_store(ns):
                await self._delete_stored(ns, key)
            return removed

    async def invalidate_identifier(self, nid: str, namespaces: Iterable[str]) -> int:
        """Drop every entry for a borrower in the given namespaces."""
        removed = 0
        for namespace in namespaces:
            ns = self._namespace(namespace)
            keys = {key for (name, key) in self._memory if name == ns.name and _belongs_to(key, nid)}
            if self._uses_store(ns):
                try:
                    stored = await self.store.keys(self._store_key(ns.name, nid))
                except CacheError as e:
                    logger.warning(f"Could not list stored {ns.name} entries for {nid}: {e}")
                    stored = []
                prefix_len = len(self._store_key(ns.name, ""))
                keys.update(k[prefix_len:] for k in stored if _belongs_to(k[prefix_len:], nid))
            for key in keys:
                if await self.invalidate(ns.name, key):
                    removed += 1
        logger.debug(f"Invalidated {removed} cached entries for {nid}")
        return removed

    async def identifiers(self, namespaces: Iterable[str]) -> Set[str]:
        """NIDs that own an entry in any of the given namespaces, in either tier."""
        nids: Set[str] = set()
        for namespace in namespaces:
            ns = self._namespace(namespace)
            nids.update(key.partition(":")[0] for (name, key) in self._memory if name == ns.name)
            if self._uses_store(ns):
                prefix = self._store_key(ns.name, "")
                try:
                    stored = await self.store.keys(prefix)
                except CacheError as e:
                    logger.warning(f"Could not list stored {ns.name} entries: {e}")
                    continue
                nids.update(k[len(prefix):].partition(":")[0] for k in stored)
        return nids

    async def get_or_load(
        self,
        namespace: str,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        force_refresh: bool = False,
    ) -> Any:
        """Return the cached value or load it once, sharing the load with concurrent callers."""
        if not force_refresh:
            cached = await self.get(namespace, key)
            if cached is not None:
                return cached

        flight_key = (namespace, key)
        inflight = self._inflight.get(flight_key)
        if inflight is not None:
            self.deduplicated_loads += 1
            return await asyncio.shield(inflight)

        future = asyncio.get_running_loop().create_future()
        self._inflight[flight_key] = future
        try:
            value = await loader()
            await self.put(namespace, key, value, ttl)
            future.set_result(value)
            return value
        except asyncio.CancelledError:
            # Waiters were not cancelled themselves; they see an ordinary failure they can retry
            future.set_exception(
                CacheError("shared load was cancelled", operation="get_or_load", identifier=key)
            )
            future.exception()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure does not warn at GC
            future.exception()
            raise
        finally:
            self._inflight.pop(flight_key, None)

    async def clear(self):
        self._memory.clear()
        if self.store is not None:
            try:
                await self.store.clear(STORE_PREFIX)
            except CacheError as e:
                logger.warning(f"Persistent cache clear failed: {e}")
        self._reset_counters()
        logger.info("Cache cleared")

    async def sweep(self) -> int:
        """Purge expired entries from both tiers. Returns the number evicted."""
        now = self.clock()
        evicted = 0
        for (namespace, key), entry in list(self._memory.items()):
            if not entry.is_expired(now):
                continue
            ns = self._namespace(namespace)
            try:
                async with self._lock(namespace, key):
                    current = self._memory.get((namespace, key))
                    if current is not None and current.is_expired(now):
                        await self._evict(ns, key)
                        evicted += 1
            except Exception as e:
                logger.error(f"Error sweeping {namespace}:{key}: {e}", exc_info=True)

        if self.store is not None:
            evicted += await self._sweep_store(now)
        if evicted:
            logger.info(f"Cache sweep evicted {evicted} entries")
        return evicted

    async def _sweep_store(self, now: float) -> int:
        evicted = 0
        try:
            stored_keys = await self.store.keys(STORE_PREFIX)
        except CacheError as e:
            logger.warning(f"Cache sweep could not list stored entries: {e}")
            return 0
        for store_key in stored_keys:
            namespace, _, key = store_key[len(STORE_PREFIX):].partition(":")
            if (namespace, key) in self._memory:
                continue
            ns = self._namespace(namespace)
            async with self._lock(namespace, key):
                entry = await self._read_stored(ns, key)
                if entry is not None and entry.is_expired(now):
                    await self._evict(ns, key)
                    evicted += 1
        return evicted

    async def stats(self) -> CacheStats:
        now = self.clock()
        persistent_size = 0
        if self.store is not None:
            try:
                persistent_size = len(await self.store.keys(STORE_PREFIX))
            except CacheError as e:
                logger.warning(f"Could not count stored entries: {e}")
        total = self.hits + self.misses
        return CacheStats(
            hits=self.hits,
            misses=self.misses,
            evictions=self.evictions,
            size=len(self._memory),
            persistent_size=persistent_size,
            expired_entries=sum(1 for e in self._memory.values() if e.is_expired(now)),
            deduplicated_loads=self.deduplicated_loads,
            hit_ratio=round(self.hits / total, 4) if total else 0.0,
        )

    def start(self):
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error in cache sweep loop: {e}", exc_info=True)

    async def _evict(self, ns: Namespace, key: str):
        self._memory.pop((ns.name, key), None)
        if self._uses_store(ns):
            await self._delete_stored(ns, key)
        self.evictions += 1

    async def _read_stored(self, ns: Namespace, key: str) -> Optional[CacheEntry]:
        store_key = self._store_key(ns.name, key)
        try:
            raw = await self.store.get(store_key)
        except CacheError as e:
            logger.warning(f"Persistent cache read failed for {store_key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw, ns.model)
        except (ValueError, KeyError, TypeError, PydanticValidationError) as e:
            logger.warning(f"Discarding corrupt cache entry {store_key}: {e}")
            await self._delete_stored(ns, key)
            return None

    async def _delete_stored(self, ns: Namespace, key: str):
        try:
            await self.store.delete(self._store_key(ns.name, key))
        except CacheError as e:
            logger.warning(f"Persistent cache delete failed for {ns.name}:{key}: {e}")


def _belongs_to(key: str, nid: str) -> bool:
    return key == nid or key.startswith(f"{nid}:")
