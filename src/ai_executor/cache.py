# cache.py
# Content-addressed memoization of model calls.
#
# Key = SHA-256 of the deterministic JSON of {prompt, options}. The decorator
# sits in front of the real provider; the in-memory store is a size- and
# TTL-bounded cachetools TLRUCache, swept on a background thread. cachetools
# is not thread-safe, so every store operation holds the lock.

import hashlib
import json
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from cachetools import TLRUCache

from ai_executor.models import GenerateOptions, ModelResponse
from ai_executor.providers import ModelProvider

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Keying
# ---------------------------------------------------------------------------


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _serialize(payload: dict[str, Any]) -> str:
    """Deterministic serialization. sort_keys is non-negotiable."""
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)


def cache_key(prompt: str, options: GenerateOptions | None = None) -> str:
    options = options or GenerateOptions()
    return _sha256(_serialize({"prompt": prompt, "modelOptions": options.model_dump()}))


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class CacheProvider(ABC):
    """Async key/value store. Implementations must be safe for concurrent use."""

    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def clear(self) -> None: ...


def _time_to_use(key: str, item: tuple[Any, float | None], now: float) -> float:
    ttl = item[1]
    return now + ttl if ttl and ttl > 0 else math.inf


class InMemoryCacheProvider(CacheProvider):
    """
    Process-local cache on a `cachetools.TLRUCache`, so every entry carries
    its own expiry.

    `max_size <= 0` disables storage. When full, the least recently used
    entry is evicted. A daemon thread sweeps expired entries every
    `cleanup_interval` seconds until close() is called; pass 0 to expire
    only on access.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float | None = None,
        cleanup_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._entries = TLRUCache(maxsize=max(max_size, 0), ttu=_time_to_use, timer=clock)
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._sweeper: threading.Thread | None = None

        if cleanup_interval > 0 and max_size > 0:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(cleanup_interval,),
                name="ai-executor-cache-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    async def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._entries.get(key)
        return None if item is None else item[0]

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        if self._max_size <= 0:
            return
        effective_ttl = ttl if ttl is not None else self._default_ttl
        with self._lock:
            self._entries[key] = (value, effective_ttl)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def sweep(self) -> int:
        """Drop expired entries now. Returns how many were removed."""
        with self._lock:
            return len(self._entries.expire())

    def close(self) -> None:
        """Stop the background sweeper. Safe to call more than once."""
        self._stopped.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _sweep_loop(self, interval: float) -> None:
        while not self._stopped.wait(interval):
            removed = self.sweep()
            if removed:
                logger.debug("Cache sweep removed %d expired entr(ies).", removed)


# ---------------------------------------------------------------------------
# Decorator
# ---------------------------------------------------------------------------


class CachingModelProvider(ModelProvider):
    """
    Wraps a real provider with a cache. Responses are tagged in model_info
    with `from_cache` and `cache_key` so a bad cached answer can be evicted.
    """

    def __init__(self, provider: ModelProvider, cache: CacheProvider, ttl: float | None = None) -> None:
        self._provider = provider
        self._cache = cache
        self._ttl = ttl

    async def generate(self, prompt: str, options: GenerateOptions | None = None) -> ModelResponse:
        key = cache_key(prompt, options)

        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit %s", key[:12])
            response = ModelResponse.model_validate(cached)
            return response.model_copy(update={"model_info": {**response.model_info, "from_cache": True, "cache_key": key}})

        response = await self._provider.generate(prompt, options)
        await self._cache.set(key, response.model_dump(), self._ttl)
        return response.model_copy(update={"model_info": {**response.model_info, "from_cache": False, "cache_key": key}})
