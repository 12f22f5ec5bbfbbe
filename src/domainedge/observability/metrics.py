from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

ROUTING_DECISIONS = Counter(
    "domainedge_routing_decisions_total",
    "Edge routing decisions",
    ["action", "source"],  # source: cache/store/none
)

VERIFICATION_ATTEMPTS = Counter(
    "domainedge_verification_attempts_total",
    "Domain verification attempts",
    ["result"],  # result: verified/failed/skipped
)

DNS_LOOKUPS = Counter(
    "domainedge_dns_lookups_total",
    "DNS lookups by record type and outcome",
    ["record_type", "outcome"],
)

REDIRECT_CACHE_ENTRIES = Gauge(
    "domainedge_redirect_cache_entries",
    "Current redirect cache entries",
)

REDIRECT_CACHE_HIT_RATE = Gauge(
    "domainedge_redirect_cache_hit_rate",
    "Redirect cache hit rate in percent",
)

DNS_LOOKUP_DURATION = Histogram(
    "domainedge_dns_lookup_duration_seconds",
    "DNS lookup latency",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
