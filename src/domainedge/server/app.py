"""Edge server: routing middleware plus the domain verification API.

Every request first goes through EdgeRouter. Custom domain traffic is
rewritten and proxied to the renderer, platform subdomain paths with a
verified domain get a 301, and everything else falls through to the API
routes or the catch-all proxy.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import structlog
from aiohttp import web

from domainedge.cache.redirect import RedirectCache
from domainedge.core.config import DomainEdgeConfig, StoreConfig, get_config
from domainedge.core.exceptions import DomainEdgeError, DomainValidationError
from domainedge.core.tasks import BackgroundDispatcher
from domainedge.domains.manager import DomainVerificationManager
from domainedge.domains.propagation import PropagationChecker
from domainedge.domains.storage import DomainRecordStore, JsonDomainStore
from domainedge.domains.supabase import SupabaseDomainStore
from domainedge.domains.validation import clean_domain
from domainedge.domains.verification import DNSVerifier
from domainedge.observability.metrics import (
    REDIRECT_CACHE_ENTRIES,
    REDIRECT_CACHE_HIT_RATE,
    generate_metrics,
    get_content_type,
)
from domainedge.routing.edge import EdgeRouter, RoutingAction
from domainedge.server.proxy import SiteProxy

logger = structlog.get_logger()


def create_store(config: StoreConfig) -> DomainRecordStore:
    """Build the configured domain store backend."""
    if config.backend == "supabase":
        if not config.supabase_url or not config.supabase_key:
            raise DomainValidationError(
                "Supabase store requires DOMAINEDGE_STORE_SUPABASE_URL and DOMAINEDGE_STORE_SUPABASE_KEY"
            )
        return SupabaseDomainStore(config.supabase_url, config.supabase_key, timeout=config.timeout)
    return JsonDomainStore(config.json_path)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


async def _read_json(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body."""
    try:
        body = await request.json()
    except ValueError as e:
        raise DomainValidationError("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise DomainValidationError("Invalid JSON body")
    return body


class EdgeServer:
    """aiohttp application hosting the edge router and verification API."""

    def __init__(
        self,
        store: DomainRecordStore,
        cache: RedirectCache,
        verifier: DNSVerifier,
        propagation: PropagationChecker,
        manager: DomainVerificationManager,
        router: EdgeRouter,
        proxy: SiteProxy,
        dispatcher: BackgroundDispatcher | None = None,
        bind: str = "0.0.0.0:8080",
        warm_on_startup: bool = True,
    ) -> None:
        self.store = store
        self.cache = cache
        self.verifier = verifier
        self.propagation = propagation
        self.manager = manager
        self.router = router
        self.proxy = proxy
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.bind = bind
        self.warm_on_startup = warm_on_startup

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    @classmethod
    def from_config(cls, config: DomainEdgeConfig | None = None) -> EdgeServer:
        """Wire every component from configuration."""
        config = config or get_config()
        dns = config.dns
        server = config.server

        dispatcher = BackgroundDispatcher()
        store = create_store(config.store)
        cache = RedirectCache.from_config(config.cache)
        verifier = DNSVerifier.from_config(dns)
        propagation = PropagationChecker(
            dns.propagation_resolvers,
            platform_name=dns.platform_name,
            timeout=min(dns.timeout, 5.0),
            threshold=dns.propagation_threshold,
        )
        manager = DomainVerificationManager(
            store,
            verifier,
            cache,
            dispatcher=dispatcher,
            verification_window=timedelta(days=server.verification_window_days),
            max_verification_attempts=server.max_verification_attempts,
        )
        router = EdgeRouter.from_config(config.router, store, cache, dispatcher=dispatcher)
        return cls(
            store=store,
            cache=cache,
            verifier=verifier,
            propagation=propagation,
            manager=manager,
            router=router,
            proxy=SiteProxy(server.upstream_url),
            dispatcher=dispatcher,
            bind=server.bind,
            warm_on_startup=config.cache.warm_on_startup,
        )

    def build_app(self) -> web.Application:
        """Create the aiohttp application with middlewares and routes."""
        app = web.Application(middlewares=[self._error_middleware, self._edge_middleware])
        app.router.add_post("/api/dns-check", self._handle_dns_check)
        app.router.add_post("/api/dns-propagation", self._handle_dns_propagation)
        app.router.add_post("/api/verify-domain", self._handle_verify_domain)
        app.router.add_get("/api/verify-domain", self._handle_domain_status)
        app.router.add_post("/api/domain-config", self._handle_configure_domain)
        app.router.add_patch("/api/domain-config", self._handle_update_domain)
        app.router.add_delete("/api/domain-config", self._handle_remove_domain)
        app.router.add_get("/api/cache/stats", self._handle_cache_stats)
        app.router.add_get("/health", self._handle_health_check)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_route("*", "/{path:.*}", self._handle_proxy)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        if self.warm_on_startup:
            await self.cache.warm(self.store)
        await self.cache.start()

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.cache.stop()
        await self.dispatcher.drain()
        await self.proxy.close()
        await self.store.close()

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            return await handler(request)
        except DomainEdgeError as e:
            if e.status >= 500:
                logger.warning("Request failed", path=request.path, code=e.code, error=e.message)
            return web.json_response(e.to_dict(), status=e.status)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error("Unhandled request error", path=request.path, error=str(e), exc_info=True)
            return web.json_response({"error": "Internal server error"}, status=500)

    @web.middleware
    async def _edge_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        decision = await self.router.route(request.host, request.path, request.query_string)

        if decision.action == RoutingAction.REDIRECT:
            headers = dict(decision.headers)
            headers["Location"] = decision.location or "/"
            return web.Response(status=decision.status or 301, headers=headers)

        if decision.action == RoutingAction.NOT_FOUND:
            return web.Response(text="Website not found", status=404, content_type="text/plain")

        if decision.action == RoutingAction.REWRITE:
            return await self.proxy.forward(request, decision.rewrite_path, decision.headers)

        return await handler(request)

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint."""
        stats = self.cache.stats
        REDIRECT_CACHE_ENTRIES.set(stats.size)
        REDIRECT_CACHE_HIT_RATE.set(stats.hit_rate)
        # content_type= rejects the charset parameter prometheus includes
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

    async def _handle_proxy(self, request: web.Request) -> web.Response:
        return await self.proxy.forward(request)

    async def _handle_dns_check(self, request: web.Request) -> web.Response:
        """Ad-hoc TXT ownership or connectivity check for a domain."""
        body = await _read_json(request)
        domain = body.get("domain")
        if not domain or not isinstance(domain, str):
            raise DomainValidationError("Domain is required")
        domain = clean_domain(domain)

        if _as_bool(body.get("checkConnectivity", False)):
            result = await self.verifier.check_connectivity(domain)
            return web.json_response(result.to_dict())

        token = body.get("token")
        if not token or not isinstance(token, str):
            raise DomainValidationError("Token is required for verification")

        result = await self.verifier.verify_ownership(domain, token)
        return web.json_response(result.to_dict())

    async def _handle_dns_propagation(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        domain = body.get("domain")
        token = body.get("token")
        if not domain or not token or not isinstance(domain, str) or not isinstance(token, str):
            raise DomainValidationError("Domain and token are required")

        status = await self.propagation.check(clean_domain(domain), token)
        return web.json_response(status.to_dict())

    async def _handle_verify_domain(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        domain_id = body.get("domain_id")
        if not domain_id or not isinstance(domain_id, str):
            raise DomainValidationError("domain_id is required")

        outcome = await self.manager.verify_domain(domain_id, force_recheck=_as_bool(body.get("force_recheck", False)))
        return web.json_response(outcome.to_dict())

    async def _handle_domain_status(self, request: web.Request) -> web.Response:
        domain_id = request.query.get("domain_id")
        if not domain_id:
            raise DomainValidationError("domain_id is required")

        if _as_bool(request.query.get("check_connectivity", "false")):
            report = await self.manager.get_domain_status(domain_id)
            connectivity = await self.verifier.check_connectivity(report.record.custom_domain)
            last_verified = report.record.last_verified_at
            return web.json_response(
                {
                    "domain": report.record.custom_domain,
                    "connectivity": connectivity.to_dict(),
                    "domain_status": report.status.value,
                    "last_verified_at": last_verified.isoformat() if last_verified else None,
                }
            )

        report = await self.manager.get_domain_status(domain_id)
        return web.json_response(report.to_dict())

    async def _handle_configure_domain(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        project_id = body.get("project_id")
        custom_domain = body.get("custom_domain")
        if not project_id or not custom_domain:
            raise DomainValidationError("project_id and custom_domain are required")

        record, created = await self.manager.configure_domain(
            str(project_id),
            str(custom_domain),
            project_subdomain=body.get("project_subdomain"),
            redirect_enabled=_as_bool(body.get("redirect_enabled", True)),
            owner_id=body.get("owner_id"),
        )
        instructions = self.verifier.dns_instructions(record.custom_domain, record.verification_token)
        return web.json_response(
            {
                "success": True,
                "data": record.to_dict(),
                "dns_instructions": instructions.to_dict(),
            },
            status=201 if created else 200,
        )

    async def _handle_update_domain(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        domain_id = body.get("domain_id")
        if not domain_id or not isinstance(domain_id, str):
            raise DomainValidationError("domain_id is required")

        redirect_enabled = body.get("redirect_enabled")
        record = await self.manager.update_domain(
            domain_id,
            redirect_enabled=None if redirect_enabled is None else _as_bool(redirect_enabled),
            custom_domain=body.get("custom_domain"),
        )
        return web.json_response({"success": True, "data": record.to_dict()})

    async def _handle_remove_domain(self, request: web.Request) -> web.Response:
        domain_id = request.query.get("domain_id")
        if not domain_id:
            raise DomainValidationError("domain_id is required")

        await self.manager.remove_domain(domain_id)
        return web.json_response({"success": True})

    async def _handle_cache_stats(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "stats": self.cache.stats.to_dict(),
                "memory": self.cache.memory_usage().to_dict(),
            }
        )

    def _parse_bind(self, bind: str) -> tuple[str, int]:
        """Parse bind address into host and port."""
        if ":" in bind:
            host, port = bind.rsplit(":", 1)
            return host, int(port)
        return "0.0.0.0", int(bind)

    async def start(self) -> None:
        """Start listening on the configured bind address."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        host, port = self._parse_bind(self.bind)
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info("Edge server started", host=host, port=port, upstream=self.proxy.upstream_url)

    async def stop(self) -> None:
        """Stop the server and release resources."""
        logger.info("Stopping edge server...")
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("Edge server stopped")


async def run_server(server: EdgeServer) -> None:
    """Run ``server`` until cancelled."""
    try:
        await server.start()
        await asyncio.Event().wait()
    finally:
        await server.stop()
