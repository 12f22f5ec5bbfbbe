"""Edge routing for custom domains and tenant subdomains."""

from domainedge.routing.edge import (
    EdgeRouter,
    RoutingAction,
    RoutingDecision,
    normalize_host,
    rewrite_path_for,
    split_subdomain_path,
)

__all__ = [
    "EdgeRouter",
    "RoutingAction",
    "RoutingDecision",
    "normalize_host",
    "rewrite_path_for",
    "split_subdomain_path",
]
