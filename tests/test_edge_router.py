"""Tests for the edge routing decision."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from domainedge.cache.redirect import RedirectCache
from domainedge.core.config import RouterConfig
from domainedge.core.exceptions import StoreUnavailableError
from domainedge.core.tasks import BackgroundDispatcher
from domainedge.domains.records import DomainRecord, DomainStatus, HostnameMatch
from domainedge.domains.storage import DomainRecordStore
from domainedge.routing.edge import (
    EdgeRouter,
    RoutingAction,
    normalize_host,
    rewrite_path_for,
    split_subdomain_path,
)

PLATFORM = "einvite.onrender.com"


def verified_match(published: bool = True) -> HostnameMatch:
    record = DomainRecord(
        id="d-1",
        project_id="p-42",
        custom_domain="ourwedding.com",
        verification_token="verify-k2j4h5g6-lz8q1x2c",
        status=DomainStatus.VERIFIED,
        project_subdomain="john-jane-2024",
        project_published=published,
    )
    return HostnameMatch(record=record, project_subdomain="john-jane-2024", is_published=published)


@pytest.fixture
def store():
    store = MagicMock(spec=DomainRecordStore)
    store.find_domain_record_by_hostname = AsyncMock(return_value=None)
    store.find_redirect_target = AsyncMock(return_value=None)
    store.record_visit = AsyncMock()
    return store


@pytest.fixture
def cache():
    return RedirectCache(ttl=300, max_size=100)


@pytest.fixture
def dispatcher():
    return BackgroundDispatcher()


@pytest.fixture
def router(store, cache, dispatcher):
    return EdgeRouter(store, cache, dispatcher=dispatcher, platform_hosts=[PLATFORM])


class TestHelpers:
    """Tests for the path and host helpers."""

    @pytest.mark.parametrize(
        ("host", "expected"),
        [
            ("OurWedding.com", "ourwedding.com"),
            ("ourwedding.com:443", "ourwedding.com"),
            ("[::1]:8080", "[::1]"),
            ("", ""),
        ],
    )
    def test_normalize_host(self, host, expected):
        assert normalize_host(host) == expected

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/john-jane-2024", ("john-jane-2024", "")),
            ("/John-Jane-2024/rsvp", ("john-jane-2024", "/rsvp")),
            ("/john-jane-2024/", ("john-jane-2024", "/")),
            ("/", None),
            ("", None),
            ("/-bad", None),
            ("/under_score", None),
        ],
    )
    def test_split_subdomain_path(self, path, expected):
        assert split_subdomain_path(path) == expected

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/", "/john-jane-2024"),
            ("", "/john-jane-2024"),
            ("/rsvp", "/john-jane-2024/rsvp"),
            ("gallery", "/john-jane-2024/gallery"),
            ("/john-jane-2024", "/john-jane-2024"),
            ("/john-jane-2024/rsvp", "/john-jane-2024/rsvp"),
            ("/john-jane-2024x", "/john-jane-2024/john-jane-2024x"),
        ],
    )
    def test_rewrite_path_for(self, path, expected):
        assert rewrite_path_for("john-jane-2024", path) == expected


class TestHostClassification:
    """Tests for platform/custom host detection."""

    @pytest.mark.parametrize(
        "host",
        [PLATFORM, "localhost:3000", "127.0.0.1", "preview-123.vercel.app", "feature.onrender.com", "x.fly.dev"],
    )
    def test_not_custom(self, router, host):
        assert router.is_custom_domain(host) is False

    @pytest.mark.parametrize("host", ["ourwedding.com", "www.ourwedding.com", "OurWedding.com:443"])
    def test_custom(self, router, host):
        assert router.is_custom_domain(host) is True

    @pytest.mark.parametrize(
        ("path", "excluded"),
        [
            ("/api/verify-domain", True),
            ("/api", True),
            ("/_next/static/chunk.js", True),
            ("/favicon.ico", True),
            ("/apiary", False),
            ("/john-jane-2024", False),
        ],
    )
    def test_excluded_paths(self, router, path, excluded):
        assert router.is_excluded_path(path) is excluded

    def test_from_config(self, store, cache):
        config = RouterConfig(platform_hosts=["Example.app"], excluded_prefixes=["/x"])

        router = EdgeRouter.from_config(config, store, cache)

        assert router.platform_hosts == {"example.app"}
        assert router.excluded_prefixes == ("/x",)


class TestCustomDomainRouting:
    """Requests whose Host is a customer domain."""

    @pytest.mark.asyncio
    async def test_verified_domain_rewrites(self, router, store, dispatcher):
        store.find_domain_record_by_hostname.return_value = verified_match()

        decision = await router.route("ourwedding.com", "/rsvp")
        await dispatcher.drain()

        store.find_domain_record_by_hostname.assert_awaited_once_with("ourwedding.com")
        assert decision.action == RoutingAction.REWRITE
        assert decision.rewrite_path == "/john-jane-2024/rsvp"
        assert decision.headers == {
            "x-public-route": "1",
            "x-custom-domain": "ourwedding.com",
            "x-project-subdomain": "john-jane-2024",
        }
        store.record_visit.assert_awaited_once_with("d-1", {"hostname": "ourwedding.com", "path": "/rsvp"})

    @pytest.mark.asyncio
    async def test_root_rewrites_to_project(self, router, store):
        store.find_domain_record_by_hostname.return_value = verified_match()

        decision = await router.route("OurWedding.com:443", "/")

        assert decision.action == RoutingAction.REWRITE
        assert decision.rewrite_path == "/john-jane-2024"

    @pytest.mark.asyncio
    async def test_unknown_domain_not_found(self, router, store):
        decision = await router.route("unknown.com", "/")

        assert decision.action == RoutingAction.NOT_FOUND
        assert decision.status == 404
        store.record_visit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unpublished_project_not_found(self, router, store):
        store.find_domain_record_by_hostname.return_value = verified_match(published=False)

        decision = await router.route("ourwedding.com", "/")

        assert decision.action == RoutingAction.NOT_FOUND

    @pytest.mark.asyncio
    async def test_analytics_failure_does_not_affect_routing(self, router, store, dispatcher):
        store.find_domain_record_by_hostname.return_value = verified_match()
        store.record_visit.side_effect = StoreUnavailableError("analytics down")

        decision = await router.route("ourwedding.com", "/")
        await dispatcher.drain()

        assert decision.action == RoutingAction.REWRITE

    @pytest.mark.asyncio
    async def test_excluded_path_on_custom_domain_passes(self, router, store):
        decision = await router.route("ourwedding.com", "/api/dns-check")

        assert decision.action == RoutingAction.PASS_THROUGH
        store.find_domain_record_by_hostname.assert_not_awaited()


class TestSubdomainRedirects:
    """Requests for /<subdomain> on the platform host."""

    @pytest.mark.asyncio
    async def test_cached_redirect_skips_store(self, router, store, cache):
        cache.set("john-jane-2024", "ourwedding.com", True)

        decision = await router.route(PLATFORM, "/john-jane-2024", "ref=qr")

        store.find_redirect_target.assert_not_awaited()
        assert decision.action == RoutingAction.REDIRECT
        assert decision.status == 301
        assert decision.location == "https://ourwedding.com/john-jane-2024?ref=qr"
        assert decision.headers["Cache-Control"] == "public, max-age=3600, immutable"
        assert decision.headers["X-Redirect-Source"] == "cache"

    @pytest.mark.asyncio
    async def test_store_fallback_populates_cache(self, router, store, cache):
        store.find_redirect_target.return_value = "https://ourwedding.com"

        first = await router.route(PLATFORM, "/john-jane-2024")
        second = await router.route(PLATFORM, "/john-jane-2024")

        store.find_redirect_target.assert_awaited_once_with("john-jane-2024")
        assert first.location == "https://ourwedding.com/john-jane-2024"
        assert first.headers["X-Redirect-Source"] == "store"
        assert second.headers["X-Redirect-Source"] == "cache"

    @pytest.mark.asyncio
    async def test_no_redirect_is_cached(self, router, store, cache):
        first = await router.route(PLATFORM, "/plain-site")
        second = await router.route(PLATFORM, "/plain-site")

        assert first.action == RoutingAction.PASS_THROUGH
        assert second.action == RoutingAction.PASS_THROUGH
        store.find_redirect_target.assert_awaited_once()
        assert cache.peek("plain-site").custom_domain is None

    @pytest.mark.asyncio
    async def test_disabled_redirect_in_cache_passes(self, router, store, cache):
        cache.set("john-jane-2024", "ourwedding.com", False)

        decision = await router.route(PLATFORM, "/john-jane-2024")

        assert decision.action == RoutingAction.PASS_THROUGH
        store.find_redirect_target.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deep_path_preserved(self, router, cache):
        cache.set("john-jane-2024", "ourwedding.com", True)

        decision = await router.route(PLATFORM, "/john-jane-2024/gallery")

        assert decision.location == "https://ourwedding.com/john-jane-2024/gallery"

    @pytest.mark.asyncio
    async def test_redirect_keeps_slug_and_query(self, router, store, cache):
        """The custom domain receives the full platform path and query."""
        cache.set("john-jane-2024", "x.com", True)

        decision = await router.route(PLATFORM, "/john-jane-2024", "ref=qr")

        assert decision.action == RoutingAction.REDIRECT
        assert decision.status == 301
        assert decision.location == "https://x.com/john-jane-2024?ref=qr"
        store.find_redirect_target.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redirected_path_rewrites_without_doubling(self, router, store, cache):
        """Following the redirect serves the same tenant page on the custom domain."""
        cache.set("john-jane-2024", "ourwedding.com", True)
        store.find_domain_record_by_hostname.return_value = verified_match()

        redirect = await router.route(PLATFORM, "/john-jane-2024/rsvp")
        landing = await router.route("ourwedding.com", "/john-jane-2024/rsvp")

        assert redirect.location == "https://ourwedding.com/john-jane-2024/rsvp"
        assert landing.action == RoutingAction.REWRITE
        assert landing.rewrite_path == "/john-jane-2024/rsvp"

    @pytest.mark.asyncio
    async def test_localhost_and_preview_hosts_never_redirect(self, router, store, cache):
        cache.set("john-jane-2024", "ourwedding.com", True)

        for host in ("localhost:3000", "pr-12.onrender.com"):
            decision = await router.route(host, "/john-jane-2024")
            assert decision.action == RoutingAction.PASS_THROUGH

        store.find_redirect_target.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_excluded_paths_pass(self, router, store):
        for path in ("/dashboard", "/api/verify-domain", "/_next/app.js", "/health"):
            decision = await router.route(PLATFORM, path)
            assert decision.action == RoutingAction.PASS_THROUGH

        store.find_redirect_target.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_root_passes(self, router, store):
        decision = await router.route(PLATFORM, "/")

        assert decision.action == RoutingAction.PASS_THROUGH

    @pytest.mark.asyncio
    async def test_store_failure_passes_through(self, router, store, cache):
        store.find_redirect_target.side_effect = StoreUnavailableError("db down")

        decision = await router.route(PLATFORM, "/john-jane-2024")

        assert decision.action == RoutingAction.PASS_THROUGH
        assert cache.peek("john-jane-2024") is None

    @pytest.mark.asyncio
    async def test_hostname_lookup_failure_passes_through(self, router, store):
        store.find_domain_record_by_hostname.side_effect = RuntimeError("boom")

        decision = await router.route("ourwedding.com", "/")

        assert decision.action == RoutingAction.PASS_THROUGH

    def test_decision_to_dict(self):
        from domainedge.routing.edge import RoutingDecision

        assert RoutingDecision.not_found().to_dict()["status"] == 404
