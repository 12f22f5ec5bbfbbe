"""Core."""

from .config import (
    CacheConfig,
    DNSConfig,
    DomainEdgeConfig,
    RouterConfig,
    ServerConfig,
    StoreConfig,
    clear_config,
    get_config,
)
from .exceptions import (
    DNSErrorCategory,
    DNSLookupError,
    DomainConflictError,
    DomainEdgeError,
    DomainNotFoundError,
    DomainValidationError,
    StoreUnavailableError,
    VerificationExpiredError,
    VerificationRateLimitedError,
    format_error_for_user,
)
from .tasks import BackgroundDispatcher

__all__ = [
    "BackgroundDispatcher",
    "CacheConfig",
    "DNSConfig",
    "DNSErrorCategory",
    "DNSLookupError",
    "DomainConflictError",
    "DomainEdgeConfig",
    "DomainEdgeError",
    "DomainNotFoundError",
    "DomainValidationError",
    "RouterConfig",
    "ServerConfig",
    "StoreConfig",
    "StoreUnavailableError",
    "VerificationExpiredError",
    "VerificationRateLimitedError",
    "clear_config",
    "format_error_for_user",
    "get_config",
]
