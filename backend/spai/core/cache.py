"""
In-process response cache with single-flight population and periodic full flush.

Namespaces (one per kind of completion):
- chat_responses: key = trimmed prompt
- chat_options:   key = model + "_" + trimmed prompt
- recipes:        key = ingredients + "_" + cuisine + "_" + dietary restrictions
- itineraries:    key = destination + "_" + days + "_" + interests + "_" + budget

Policy:
- No per-entry TTL and no LRU. Entries live until the next full flush,
  which CacheEvictionScheduler runs every CACHE_CLEAR_INTERVAL_SECONDS
  (default 3600) across every namespace.
- At most one computation per key is in flight. Concurrent misses on the
  same key wait for the first caller's supplier and receive its value, or
  re-raise its exception.
- No negative caching: exceptions, None, blank strings, and anything the
  is_cacheable predicate rejects are handed back to the callers but never
  stored.

A flush only drops stored entries. In-flight computations keep their
flight record, still coalesce late arrivals, and store their value when
they finish.
"""
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from spai.core.logging import get_logger
from spai.core.metrics import (
    record_cache_flush,
    record_cache_hit,
    record_cache_miss,
    update_cache_entries,
)

logger = get_logger(__name__)

CHAT_RESPONSES = "chat_responses"
CHAT_OPTIONS = "chat_options"
RECIPES = "recipes"
ITINERARIES = "itineraries"

DEFAULT_NAMESPACES = (CHAT_RESPONSES, CHAT_OPTIONS, RECIPES, ITINERARIES)
DEFAULT_CLEAR_INTERVAL_SECONDS = 3600.0


def has_data(value: Any) -> bool:
    """Default cacheability rule: reject None and blank strings."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


class _Flight:
    """One in-progress computation that concurrent callers wait on."""

    __slots__ = ("done", "value", "error")

    def __init__(self):
        self.done = threading.Event()
        self.value: Any = None
        self.error: Optional[BaseException] = None


class CacheNamespace:
    """A single independently clearable key -> value map."""

    def __init__(self, name: str, is_cacheable: Callable[[Any], bool] = has_data):
        self.name = name
        self._is_cacheable = is_cacheable
        self._entries: Dict[str, Any] = {}
        self._inflight: Dict[str, _Flight] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: str) -> Optional[Any]:
        """Stored value for key, or None. Does not wait on in-flight work."""
        with self._lock:
            return self._entries.get(key)

    def get_or_compute(
        self,
        key: str,
        supplier: Callable[[], Any],
        is_cacheable: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Return the cached value for key, computing it at most once concurrently.

        Args:
            key: Normalized cache key
            supplier: Zero-argument callable producing the value on a miss
            is_cacheable: Overrides the namespace's cacheability rule for this call

        Raises:
            Whatever the supplier raised (to the leader and to every waiter).
        """
        with self._lock:
            if key in self._entries:
                value = self._entries[key]
                leader = False
                flight = None
            else:
                value = None
                flight = self._inflight.get(key)
                leader = flight is None
                if leader:
                    flight = _Flight()
                    self._inflight[key] = flight

        if flight is None:
            record_cache_hit(self.name)
            logger.debug("cache_hit", cache=self.name, key=key)
            return value

        if not leader:
            logger.debug("cache_wait_inflight", cache=self.name, key=key)
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value

        record_cache_miss(self.name)
        logger.debug("cache_miss", cache=self.name, key=key)

        try:
            value = supplier()
        except BaseException as exc:
            flight.error = exc
            with self._lock:
                self._inflight.pop(key, None)
            flight.done.set()
            logger.debug(
                "cache_compute_failed",
                cache=self.name,
                key=key,
                error_type=type(exc).__name__,
            )
            raise

        accept = is_cacheable or self._is_cacheable
        store = accept(value)
        with self._lock:
            if store:
                self._entries[key] = value
            self._inflight.pop(key, None)
            size = len(self._entries)
        flight.value = value
        flight.done.set()

        if store:
            update_cache_entries(self.name, size)
        else:
            logger.debug("cache_store_skipped", cache=self.name, key=key)
        return value

    def clear(self) -> int:
        """Drop every stored entry. Returns the number evicted."""
        with self._lock:
            evicted = len(self._entries)
            self._entries.clear()
        update_cache_entries(self.name, 0)
        return evicted


class ResponseCache:
    """
    Set of cache namespaces sharing one eviction schedule.

    Usage:
        cache = ResponseCache()
        text = cache.get_or_compute("recipes", key, lambda: generate(...))
        cache.clear_all()
    """

    def __init__(self, namespaces: Iterable[str] = DEFAULT_NAMESPACES):
        self._namespaces: Dict[str, CacheNamespace] = {}
        self._lock = threading.Lock()
        for name in namespaces:
            self._namespaces[name] = CacheNamespace(name)

    def namespace(self, name: str) -> CacheNamespace:
        """Get a namespace, creating it on first use."""
        ns = self._namespaces.get(name)
        if ns is None:
            with self._lock:
                ns = self._namespaces.get(name)
                if ns is None:
                    ns = CacheNamespace(name)
                    self._namespaces[name] = ns
        return ns

    def get_or_compute(
        self,
        namespace: str,
        key: str,
        supplier: Callable[[], Any],
        is_cacheable: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        return self.namespace(namespace).get_or_compute(key, supplier, is_cacheable)

    def clear(self, namespace: str) -> int:
        """Flush one namespace."""
        evicted = self.namespace(namespace).clear()
        logger.info("cache_namespace_cleared", cache=namespace, evicted=evicted)
        return evicted

    def clear_all(self) -> int:
        """Flush every namespace unconditionally. Returns the total evicted."""
        with self._lock:
            namespaces = list(self._namespaces.values())
        evicted = {ns.name: ns.clear() for ns in namespaces}
        record_cache_flush()
        logger.info("cache_cleared", evicted=sum(evicted.values()), namespaces=evicted)
        return sum(evicted.values())

    def get_stats(self) -> Dict[str, int]:
        """Entry count per namespace."""
        with self._lock:
            namespaces = list(self._namespaces.values())
        return {ns.name: len(ns) for ns in namespaces}


class CacheEvictionScheduler:
    """
    Background thread that flushes the whole cache at a fixed interval.

    The first flush happens one full interval after start().
    """

    def __init__(self, cache: ResponseCache, interval_seconds: float = DEFAULT_CLEAR_INTERVAL_SECONDS):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="cache-eviction",
            daemon=True,
        )
        self._thread.start()
        logger.info("cache_eviction_scheduler_started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("cache_eviction_scheduler_stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.cache.clear_all()
            except Exception as e:
                logger.error(
                    "cache_scheduled_clear_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
