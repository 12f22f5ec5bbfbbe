"""Redirect cache for subdomain -> custom domain lookups."""

from domainedge.cache.redirect import (
    CacheMemoryUsage,
    CacheStats,
    RedirectCache,
    RedirectCacheEntry,
)

__all__ = [
    "CacheMemoryUsage",
    "CacheStats",
    "RedirectCache",
    "RedirectCacheEntry",
]
