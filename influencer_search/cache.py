"""In-memory TTL + LRU cache of finished search responses"""

import asyncio
import contextlib
import hashlib
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import orjson
from loguru import logger

from .config import (
    BROAD_QUERY_RESULT_THRESHOLD,
    BROAD_QUERY_TTL,
    CACHE_SWEEP_INTERVAL,
    DEFAULT_CACHE_TTL,
    MAX_CACHE_SIZE,
    NARROW_QUERY_NICHE_THRESHOLD,
    NARROW_QUERY_TTL,
)
from .models import CacheEntry, SearchParams

QueryParams = Union[SearchParams, Mapping[str, Any]]


def normalize_params(params: QueryParams) -> Dict[str, Any]:
    """Lower-cased, sorted projection so key order and case never cause misses"""
    if isinstance(params, SearchParams):
        return params.cache_projection()
    projection: Dict[str, Any] = {}
    for key, value in params.items():
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, str):
            value = value.strip().lower()
        elif isinstance(value, (list, tuple, set)):
            value = sorted(str(v).strip().lower() for v in value)
        projection[str(key)] = value
    return projection


def cache_key(params: QueryParams) -> str:
    """Deterministic hash of the normalized projection"""
    payload = orjson.dumps(normalize_params(params), option=orjson.OPT_SORT_KEYS)
    return hashlib.sha256(payload).hexdigest()


def ttl_for(params: QueryParams) -> float:
    """
    Pick a TTL from the query shape.

    A brand with more than two niches is narrow (15 min) and wins over the
    broad rule. Large result counts or any location filter are broad (2 h).
    Everything else gets the default (30 min).
    """
    projection = normalize_params(params)
    niches = projection.get("niches") or []
    brand = projection.get("brand_name") or projection.get("brandname")
    if brand and len(niches) > NARROW_QUERY_NICHE_THRESHOLD:
        return NARROW_QUERY_TTL

    max_results = projection.get("max_results") or projection.get("maxresults") or 0
    if int(max_results) > BROAD_QUERY_RESULT_THRESHOLD or projection.get("location"):
        return BROAD_QUERY_TTL
    return DEFAULT_CACHE_TTL


class ResultCache:
    """
    Process-local response cache.

    Expired entries are dropped lazily on read and by a periodic sweep.
    When full, the entry with the oldest last access is evicted. Nothing is
    persisted: a restart starts empty.
    """

    def __init__(
        self,
        max_size: int = MAX_CACHE_SIZE,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = CACHE_SWEEP_INTERVAL,
    ):
        self.max_size = max_size
        self.clock = clock
        self.sweep_interval = sweep_interval
        self._entries: Dict[str, CacheEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, params: QueryParams) -> bool:
        entry = self._entries.get(cache_key(params))
        return entry is not None and not entry.is_expired(self.clock())

    def get(self, params: QueryParams) -> Optional[CacheEntry]:
        """Return the live entry for these params, or None on a miss"""
        key = cache_key(params)
        entry = self._entries.get(key)
        now = self.clock()

        if entry is None:
            self.misses += 1
            return None

        if entry.is_expired(now):
            del self._entries[key]
            self.expirations += 1
            self.misses += 1
            logger.debug(f"⌛ Cache entry {key[:12]} expired")
            return None

        entry.hit_count += 1
        entry.last_accessed_at = now
        self.hits += 1
        logger.debug(f"💾 Cache hit {key[:12]} (hits={entry.hit_count}, source={entry.source_strategy})")
        return entry

    def put(
        self,
        params: QueryParams,
        payload: Any,
        source_strategy: str,
        ttl: Optional[float] = None,
    ) -> CacheEntry:
        """Store a payload, evicting the least recently used entry if full"""
        key = cache_key(params)
        now = self.clock()

        if key not in self._entries:
            while self._entries and len(self._entries) >= self.max_size:
                self._evict_lru()

        entry = CacheEntry(
            query_hash=key,
            payload=payload,
            created_at=now,
            ttl=ttl if ttl is not None else ttl_for(params),
            source_strategy=source_strategy,
            normalized_params=normalize_params(params),
            last_accessed_at=now,
        )
        self._entries[key] = entry
        logger.debug(f"💾 Cached {key[:12]} from '{source_strategy}' for {entry.ttl / 60:.0f} min")
        return entry

    def _evict_lru(self) -> None:
        key = min(self._entries, key=lambda k: self._entries[k].last_accessed_at)
        del self._entries[key]
        self.evictions += 1
        logger.debug(f"🗑️ Evicted least recently used cache entry {key[:12]}")

    def invalidate(self, criteria: Union[None, str, Mapping[str, Any]] = None) -> int:
        """
        Remove matching entries, or everything when called without criteria.

        Args:
            criteria: A substring matched against each entry's normalized param values,
                or a mapping of field -> substring that must all match

        Returns:
            Number of entries removed
        """
        if criteria is None:
            removed = len(self._entries)
            self._entries.clear()
            logger.info(f"🧹 Cache cleared ({removed} entries)")
            return removed

        doomed = [
            key for key, entry in self._entries.items()
            if self._matches(entry.normalized_params, criteria)
        ]
        for key in doomed:
            del self._entries[key]
        logger.info(f"🧹 Invalidated {len(doomed)} cache entries matching {criteria!r}")
        return len(doomed)

    @staticmethod
    def _values(value: Any) -> List[str]:
        if isinstance(value, (list, tuple, set)):
            return [str(v).lower() for v in value]
        return [str(value).lower()]

    @classmethod
    def _matches(cls, projection: Dict[str, Any], criteria: Union[str, Mapping[str, Any]]) -> bool:
        # Field names never match, only the parameter values
        if isinstance(criteria, str):
            needle = criteria.strip().lower()
            return any(needle in v for value in projection.values() for v in cls._values(value))
        for field_name, expected in criteria.items():
            actual = projection.get(field_name)
            if actual is None:
                return False
            needle = str(expected).strip().lower()
            if not any(needle in v for v in cls._values(actual)):
                return False
        return True

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self.expirations += len(expired)
        if expired:
            logger.debug(f"🧹 Swept {len(expired)} expired cache entries")
        return len(expired)

    def live_entries(self) -> List[CacheEntry]:
        """Unexpired entries, without touching their access statistics"""
        now = self.clock()
        return [entry for entry in self._entries.values() if not entry.is_expired(now)]

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "total_entry_hits": sum(e.hit_count for e in self._entries.values()),
        }

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def start_sweeper(self) -> None:
        """Start the periodic expiry sweep on the running event loop"""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())
            logger.debug(f"Cache sweeper started (every {self.sweep_interval:.0f}s)")

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.debug("Cache sweeper stopped")
