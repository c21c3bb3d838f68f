"""
In-process result cache for AI responses.

Two pools share one implementation:
- search:    raw search and unified search+reasoning answers (short TTL)
- reasoning: reasoning answers, alone or fed by search results (long TTL)

Keys are content-addressed from the normalized query, the mode and an
optional image fingerprint (see ``generate_cache_key``). Each pool holds at
most ``max_keys`` entries; on overflow the oldest insertion is evicted.
Expired entries are dropped lazily on read and by a periodic sweep task
owned by ``ResultCache``.

A miss is never an error, and a failed write must not fail the request that
produced the value: callers log and continue.
"""
import asyncio
import hashlib
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional

from tonerweb.core.config import CacheSettings
from tonerweb.core.logging import get_logger
from tonerweb.core.metrics import record_cache_eviction, record_cache_hit, record_cache_miss

logger = get_logger(__name__)

SEARCH_POOL = "search"
REASONING_POOL = "reasoning"

_WHITESPACE = re.compile(r"\s+")
_KEY_SEPARATORS = re.compile(r"[|:]")


def normalize_query(query: str) -> str:
    """Trim, collapse internal whitespace and casefold."""
    return _WHITESPACE.sub(" ", query.strip()).casefold()


def hash_image(image: str) -> str:
    """SHA-256 fingerprint of an image payload (the full data URL)."""
    return hashlib.sha256(image.encode("utf-8")).hexdigest()


def generate_cache_key(
    query: str,
    mode: str,
    image_hash: Optional[str] = None,
    max_query_length: int = 200,
    max_key_length: int = 250,
) -> str:
    """
    Build a deterministic cache key.

    Format: ``q:<query prefix>|h:<digest prefix>|m:<mode>[|i:<image hash>]``.
    The digest covers the full normalized query, so two long queries sharing
    a prefix still get distinct keys. Keys longer than ``max_key_length``
    collapse to ``hash:<sha256 of the full tuple>``, cut to ``max_key_length``
    when the limit is shorter than that.

    Args:
        query: Raw user query
        mode: Request mode or strategy-specific namespace
        image_hash: Fingerprint from ``hash_image``, if an image was sent
        max_query_length: Length of the readable query prefix
        max_key_length: Upper bound on the returned key length
    """
    normalized = normalize_query(query)
    safe_prefix = _KEY_SEPARATORS.sub("_", normalized[:max_query_length])
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    key = f"q:{safe_prefix}|h:{digest[:16]}|m:{mode}"
    if image_hash:
        key += f"|i:{image_hash}"

    if len(key) > max_key_length:
        full_tuple = "\x1f".join([normalized, mode, image_hash or ""])
        key = "hash:" + hashlib.sha256(full_tuple.encode("utf-8")).hexdigest()
        key = key[:max_key_length]
    return key


@dataclass(frozen=True)
class CacheEntry:
    value: str
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class TTLCache:
    """
    Bounded TTL store guarded by a lock.

    Args:
        name: Pool name, used for metrics and logs
        ttl_seconds: Lifetime of each entry from insertion
        max_keys: Maximum number of live entries
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_keys: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expired(self._clock()):
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1

        if entry is None:
            record_cache_miss(self.name)
            return None
        record_cache_hit(self.name)
        return entry.value

    def set(self, key: str, value: str) -> None:
        """Insert or replace. Replacing resets the TTL and the insertion order."""
        evicted = 0
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl=self.ttl_seconds)
            while len(self._entries) > self.max_keys:
                self._entries.popitem(last=False)
                evicted += 1
            self._evictions += evicted

        if evicted:
            record_cache_eviction(self.name, evicted)
            logger.debug("cache_evicted", pool=self.name, count=evicted)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def flush(self) -> None:
        """Remove all entries and reset counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "keys": len(self._entries),
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ResultCache:
    """
    The two result pools plus their sweep task.

    Lifecycle: construct, ``await start()`` inside the running loop, and
    ``await shutdown()`` on application shutdown. With ``enabled=False``
    lookups always miss and writes are ignored.
    """

    def __init__(
        self,
        settings: CacheSettings,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.enabled = enabled
        self.search = TTLCache(SEARCH_POOL, settings.search_ttl, settings.max_keys, clock)
        self.reasoning = TTLCache(REASONING_POOL, settings.reasoning_ttl, settings.max_keys, clock)
        self._sweeper: Optional[asyncio.Task] = None

    def pool(self, name: str) -> TTLCache:
        if name == SEARCH_POOL:
            return self.search
        if name == REASONING_POOL:
            return self.reasoning
        raise KeyError(f"Unknown cache pool: {name}")

    def key(self, query: str, mode: str, image_hash: Optional[str] = None) -> str:
        return generate_cache_key(
            query,
            mode,
            image_hash,
            max_query_length=self.settings.max_query_length,
            max_key_length=self.settings.max_key_length,
        )

    def get(self, pool: str, key: str) -> Optional[str]:
        if not self.enabled:
            return None
        return self.pool(pool).get(key)

    def set(self, pool: str, key: str, value: str) -> None:
        if not self.enabled:
            return
        self.pool(pool).set(key, value)

    def sweep(self) -> int:
        removed = self.search.purge_expired() + self.reasoning.purge_expired()
        if removed:
            logger.debug("cache_swept", removed=removed)
        return removed

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.check_period)
            self.sweep()

    async def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())
            logger.info(
                "cache_started",
                enabled=self.enabled,
                search_ttl=self.settings.search_ttl,
                reasoning_ttl=self.settings.reasoning_ttl,
                max_keys=self.settings.max_keys,
            )

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        self.flush()
        logger.info("cache_shutdown")

    def flush(self) -> None:
        self.search.flush()
        self.reasoning.flush()

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {
            SEARCH_POOL: self.search.stats(),
            REASONING_POOL: self.reasoning.stats(),
        }
