"""In-process cache of subdomain -> custom domain redirects.

Keeps the redirect decision for platform subdomain URLs off the database on
the hot path. Entries expire after ``ttl`` seconds; when the cache is full
the entry with the oldest insertion time is evicted. "No redirect" answers
are cached too (``custom_domain=None``) so unconfigured subdomains do not
hit the store on every request.

A single threading.Lock guards the map and the hit/miss counters, so the
cache can be shared by concurrent asyncio handlers and by worker threads.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from domainedge.domains.storage import DomainRecordStore

logger = structlog.get_logger()

# Rough per-entry footprint used by memory_usage()
ESTIMATED_ENTRY_BYTES = 200


@dataclass
class RedirectCacheEntry:
    """A cached redirect decision for one subdomain."""

    subdomain: str
    custom_domain: str | None
    should_redirect: bool
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "subdomain": self.subdomain,
            "custom_domain": self.custom_domain,
            "should_redirect": self.should_redirect,
            "created_at": self.created_at,
            "ttl": self.ttl,
        }


@dataclass
class CacheStats:
    """Hit/miss counters. ``hit_rate`` is a percentage."""

    hits: int
    misses: int
    size: int
    hit_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "hitRate": self.hit_rate,
        }


@dataclass
class CacheMemoryUsage:
    entry_count: int
    estimated_size_bytes: int
    max_size: int
    utilization_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "entryCount": self.entry_count,
            "estimatedSizeBytes": self.estimated_size_bytes,
            "maxSize": self.max_size,
            "utilizationPercent": self.utilization_percent,
        }


class RedirectCache:
    """TTL and size bounded redirect cache.

    Construct one per process and pass it to the components that need it.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 1000,
        cleanup_interval: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl: Seconds an entry stays valid.
            max_size: Maximum number of entries.
            cleanup_interval: Seconds between background sweeps (see start()).
            clock: Monotonic time source in seconds.
        """
        self.ttl = ttl
        self.max_size = max_size
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._entries: dict[str, RedirectCacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._cleanup_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, config: Any) -> RedirectCache:
        """Build a cache from a CacheConfig."""
        return cls(
            ttl=config.ttl,
            max_size=config.max_size,
            cleanup_interval=config.cleanup_interval,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lookup(self, subdomain: str) -> RedirectCacheEntry | None:
        """Return a live entry, dropping it if expired. Caller holds the lock."""
        entry = self._entries.get(subdomain)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[subdomain]
            return None
        return entry

    def get(self, subdomain: str) -> RedirectCacheEntry | None:
        """Return the cached entry, or None if unset or expired."""
        with self._lock:
            entry = self._lookup(subdomain)
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
            return entry

    def peek(self, subdomain: str) -> RedirectCacheEntry | None:
        """Like get() but leaves the hit/miss counters alone."""
        with self._lock:
            return self._lookup(subdomain)

    def _evict_oldest(self) -> None:
        oldest_key = min(self._entries, key=lambda key: self._entries[key].created_at)
        del self._entries[oldest_key]
        logger.debug("Evicted oldest redirect cache entry", subdomain=oldest_key)

    def _insert(self, subdomain: str, custom_domain: str | None, should_redirect: bool) -> None:
        if subdomain not in self._entries and len(self._entries) >= self.max_size:
            self._evict_oldest()
        self._entries[subdomain] = RedirectCacheEntry(
            subdomain=subdomain,
            custom_domain=custom_domain,
            should_redirect=should_redirect and custom_domain is not None,
            created_at=self._clock(),
            ttl=self.ttl,
        )

    def set(self, subdomain: str, custom_domain: str | None, should_redirect: bool = True) -> None:
        """Cache the redirect decision for ``subdomain``.

        ``custom_domain=None`` records that the subdomain has no redirect.
        """
        with self._lock:
            self._insert(subdomain, custom_domain, should_redirect)

    def set_many(self, entries: Iterable[Any]) -> int:
        """Insert many entries at once.

        Accepts objects with ``subdomain``, ``custom_domain`` and optional
        ``should_redirect`` attributes (e.g. RedirectSeed). Returns the count.
        """
        count = 0
        with self._lock:
            for entry in entries:
                self._insert(
                    entry.subdomain,
                    entry.custom_domain,
                    getattr(entry, "should_redirect", True),
                )
                count += 1
        return count

    def delete(self, subdomain: str) -> bool:
        with self._lock:
            return self._entries.pop(subdomain, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def should_redirect(self, subdomain: str) -> bool:
        entry = self.get(subdomain)
        return entry.should_redirect if entry else False

    def get_redirect_url(self, subdomain: str) -> str | None:
        """``https://<custom domain>`` if ``subdomain`` redirects, else None."""
        entry = self.get(subdomain)
        if entry and entry.should_redirect and entry.custom_domain:
            return f"https://{entry.custom_domain}"
        return None

    def invalidate_domain(self, custom_domain: str) -> int:
        """Drop every entry pointing at ``custom_domain``. Returns the count."""
        with self._lock:
            keys = [key for key, entry in self._entries.items() if entry.custom_domain == custom_domain]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.info("Invalidated redirect cache entries", custom_domain=custom_domain, count=len(keys))
        return len(keys)

    def invalidate_project(self, subdomain: str) -> bool:
        """Drop the entry for a project subdomain."""
        removed = self.delete(subdomain)
        if removed:
            logger.info("Invalidated redirect cache entry", subdomain=subdomain)
        return removed

    def cleanup_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Cleaned up expired redirect cache entries", count=len(expired))
        return len(expired)

    @property
    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                hit_rate=(self._hits / total) * 100 if total else 0.0,
            )

    def memory_usage(self) -> CacheMemoryUsage:
        """Rough memory estimate for monitoring."""
        with self._lock:
            count = len(self._entries)
        return CacheMemoryUsage(
            entry_count=count,
            estimated_size_bytes=count * ESTIMATED_ENTRY_BYTES,
            max_size=self.max_size,
            utilization_percent=round(count / self.max_size * 100, 2),
        )

    def export_entries(self) -> list[RedirectCacheEntry]:
        """Snapshot of all entries (debugging)."""
        with self._lock:
            return list(self._entries.values())

    def import_entries(self, entries: Iterable[RedirectCacheEntry]) -> int:
        """Replace the contents with ``entries``, skipping expired ones."""
        with self._lock:
            self._entries.clear()
            now = self._clock()
            for entry in entries:
                if entry.is_expired(now):
                    continue
                if len(self._entries) >= self.max_size:
                    break
                self._entries[entry.subdomain] = entry
            return len(self._entries)

    async def warm(self, store: DomainRecordStore) -> int:
        """Bulk-load verified redirects from the store.

        Store failures are logged and leave the cache as it was.
        """
        try:
            seeds = await store.list_redirect_entries()
        except Exception as e:
            logger.warning("Redirect cache warm-up failed", error=str(e))
            return 0
        count = self.set_many(seed for seed in seeds if seed.subdomain)
        logger.info("Redirect cache warmed", entries=count)
        return count

    async def start(self) -> None:
        """Start the periodic cleanup task."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        """Stop the periodic cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        """Periodically remove expired entries."""
        while True:
            try:
                await asyncio.sleep(self.cleanup_interval)
                self.cleanup_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Redirect cache cleanup error", error=str(e))
