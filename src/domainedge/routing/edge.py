"""Per-request routing decision for custom domains and tenant subdomains.

Two kinds of public traffic reach the edge:

- ``Host: ourwedding.com`` (a verified custom domain). The request is
  rewritten internally to ``/<project subdomain><path>`` so the same
  renderer serves both URLs.
- ``Host: einvite.onrender.com`` with path ``/<slug>...``. If the tenant has
  a verified custom domain with redirects enabled, answer with a permanent
  redirect to it.

Everything else passes through untouched. Routing never fails a request:
on any unexpected error the decision falls back to pass-through.

Example:
    router = EdgeRouter(store, cache)
    decision = await router.route("einvite.onrender.com", "/john-jane-2024", "ref=qr")
    if decision.action == RoutingAction.REDIRECT:
        # 301 to decision.location with decision.headers
        pass
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from domainedge.cache.redirect import RedirectCache
from domainedge.core.tasks import BackgroundDispatcher
from domainedge.domains.storage import DomainRecordStore
from domainedge.domains.validation import clean_domain
from domainedge.observability.metrics import ROUTING_DECISIONS

logger = structlog.get_logger()

SUBDOMAIN_PATH_RE = re.compile(r"^/([a-z0-9][a-z0-9-]*)(/.*)?$", re.IGNORECASE)

DEFAULT_PLATFORM_HOSTS = ("einvite.onrender.com",)
DEFAULT_PREVIEW_SUFFIXES = (".onrender.com", ".vercel.app", ".netlify.app", ".herokuapp.com", ".fly.dev")
DEFAULT_EXCLUDED_PREFIXES = (
    "/api",
    "/_next",
    "/static",
    "/images",
    "/auth",
    "/dashboard",
    "/editor",
    "/health",
    "/metrics",
    "/favicon.ico",
    "/robots.txt",
    "/sitemap.xml",
)
DEFAULT_REDIRECT_CACHE_CONTROL = "public, max-age=3600, immutable"

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "[::1]", "0.0.0.0")


class RoutingAction(Enum):
    """What the edge should do with a request."""

    PASS_THROUGH = "pass_through"
    REWRITE = "rewrite"
    REDIRECT = "redirect"
    NOT_FOUND = "not_found"


@dataclass
class RoutingDecision:
    """Outcome of EdgeRouter.route()."""

    action: RoutingAction
    rewrite_path: str | None = None
    location: str | None = None
    status: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    source: str | None = None

    @classmethod
    def pass_through(cls) -> RoutingDecision:
        return cls(action=RoutingAction.PASS_THROUGH)

    @classmethod
    def not_found(cls) -> RoutingDecision:
        return cls(action=RoutingAction.NOT_FOUND, status=404)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "rewrite_path": self.rewrite_path,
            "location": self.location,
            "status": self.status,
            "headers": dict(self.headers),
            "source": self.source,
        }


def normalize_host(host: str) -> str:
    """Lowercase a Host header value and drop the port."""
    host = (host or "").strip().lower()
    if host.startswith("["):
        return host.split("]", 1)[0] + "]"
    return host.rsplit(":", 1)[0] if host.count(":") == 1 else host


def split_subdomain_path(path: str) -> tuple[str, str] | None:
    """Split ``/<slug>/rest`` into ``("<slug>", "/rest")``; None if ``path`` has no slug."""
    match = SUBDOMAIN_PATH_RE.match(path or "")
    if not match:
        return None
    return match.group(1).lower(), match.group(2) or ""


def rewrite_path_for(subdomain: str, path: str) -> str:
    """Path on the platform that serves ``path`` of a custom domain.

    Paths already under ``/<subdomain>`` (what a redirected visitor lands on)
    are left as they are.
    """
    if not path or path == "/":
        return f"/{subdomain}"
    if not path.startswith("/"):
        path = "/" + path
    prefix = f"/{subdomain}".lower()
    lowered = path.lower()
    if lowered == prefix or lowered.startswith(prefix + "/"):
        return path
    return f"/{subdomain}{path}"


class EdgeRouter:
    """Decides rewrite, redirect, not-found or pass-through per request."""

    def __init__(
        self,
        store: DomainRecordStore,
        cache: RedirectCache,
        dispatcher: BackgroundDispatcher | None = None,
        platform_hosts: list[str] | tuple[str, ...] = DEFAULT_PLATFORM_HOSTS,
        preview_suffixes: list[str] | tuple[str, ...] = DEFAULT_PREVIEW_SUFFIXES,
        excluded_prefixes: list[str] | tuple[str, ...] = DEFAULT_EXCLUDED_PREFIXES,
        redirect_cache_control: str = DEFAULT_REDIRECT_CACHE_CONTROL,
    ) -> None:
        self.store = store
        self.cache = cache
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.platform_hosts = {host.lower() for host in platform_hosts}
        self.preview_suffixes = tuple(suffix.lower() for suffix in preview_suffixes)
        self.excluded_prefixes = tuple(excluded_prefixes)
        self.redirect_cache_control = redirect_cache_control

    @classmethod
    def from_config(
        cls,
        config: Any,
        store: DomainRecordStore,
        cache: RedirectCache,
        dispatcher: BackgroundDispatcher | None = None,
    ) -> EdgeRouter:
        """Build a router from a RouterConfig."""
        return cls(
            store,
            cache,
            dispatcher=dispatcher,
            platform_hosts=config.platform_hosts,
            preview_suffixes=config.preview_suffixes,
            excluded_prefixes=config.excluded_prefixes,
            redirect_cache_control=config.redirect_cache_control,
        )

    def is_excluded_path(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in self.excluded_prefixes)

    def is_platform_host(self, host: str) -> bool:
        host = normalize_host(host)
        return host in self.platform_hosts or host in _LOCAL_HOSTS

    def is_custom_domain(self, host: str) -> bool:
        """True unless ``host`` is the platform, localhost or a PaaS preview host."""
        host = normalize_host(host)
        if not host or self.is_platform_host(host):
            return False
        return not host.endswith(self.preview_suffixes)

    async def route(self, host: str, path: str, query: str = "") -> RoutingDecision:
        """Decide what to do with one request.

        Args:
            host: Host header value (port allowed).
            path: URL path.
            query: Raw query string without the leading ``?``.
        """
        try:
            decision = await self._route(normalize_host(host), path or "/", query)
        except Exception as e:
            logger.warning("Edge routing failed, passing through", host=host, path=path, error=str(e))
            decision = RoutingDecision.pass_through()
        ROUTING_DECISIONS.labels(action=decision.action.value, source=decision.source or "none").inc()
        return decision

    async def _route(self, host: str, path: str, query: str) -> RoutingDecision:
        if self.is_excluded_path(path):
            return RoutingDecision.pass_through()

        if self.is_custom_domain(host):
            return await self._route_custom_domain(host, path)

        # localhost and preview hosts serve tenant pages without redirecting
        if host in self.platform_hosts:
            parts = split_subdomain_path(path)
            if parts:
                return await self._route_subdomain(parts[0], parts[1], query)

        return RoutingDecision.pass_through()

    async def _route_custom_domain(self, host: str, path: str) -> RoutingDecision:
        match = await self.store.find_domain_record_by_hostname(host)
        if match is None or not match.is_published:
            logger.debug("No published project for custom domain", host=host)
            return RoutingDecision.not_found()

        self.dispatcher.dispatch(
            "custom-domain-visit",
            self.store.record_visit,
            match.record.id,
            {"hostname": host, "path": path},
        )
        return RoutingDecision(
            action=RoutingAction.REWRITE,
            rewrite_path=rewrite_path_for(match.project_subdomain, path),
            headers={
                "x-public-route": "1",
                "x-custom-domain": host,
                "x-project-subdomain": match.project_subdomain,
            },
            source="store",
        )

    async def _route_subdomain(self, subdomain: str, rest: str, query: str) -> RoutingDecision:
        entry = self.cache.get(subdomain)
        if entry is not None:
            custom_domain = entry.custom_domain if entry.should_redirect else None
            source = "cache"
        else:
            target = await self.store.find_redirect_target(subdomain)
            custom_domain = clean_domain(target) if target else None
            self.cache.set(subdomain, custom_domain, custom_domain is not None)
            source = "store"

        if not custom_domain:
            return RoutingDecision.pass_through()

        location = f"https://{custom_domain}/{subdomain}{rest}"
        if query:
            location = f"{location}?{query}"
        logger.debug("Redirecting subdomain to custom domain", subdomain=subdomain, location=location, source=source)
        return RoutingDecision(
            action=RoutingAction.REDIRECT,
            location=location,
            status=301,
            headers={
                "Cache-Control": self.redirect_cache_control,
                "X-Redirect-Source": source,
            },
            source=source,
        )
