from domainedge.observability.metrics import (
    DNS_LOOKUP_DURATION,
    DNS_LOOKUPS,
    REDIRECT_CACHE_ENTRIES,
    REDIRECT_CACHE_HIT_RATE,
    ROUTING_DECISIONS,
    VERIFICATION_ATTEMPTS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "DNS_LOOKUPS",
    "DNS_LOOKUP_DURATION",
    "REDIRECT_CACHE_ENTRIES",
    "REDIRECT_CACHE_HIT_RATE",
    "ROUTING_DECISIONS",
    "VERIFICATION_ATTEMPTS",
    "generate_metrics",
    "get_content_type",
]
