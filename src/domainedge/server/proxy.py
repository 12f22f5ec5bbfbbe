"""Forwards requests to the renderer that serves tenant pages."""

from __future__ import annotations

from collections.abc import Mapping

import httpx
import structlog
from aiohttp import web

logger = structlog.get_logger()

# Connection-level headers that must not be forwarded
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
        "content-encoding",
    }
)


def _filter_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        name: value
        for name, value in headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS
    }


class SiteProxy:
    """Reverse proxy to the upstream page renderer."""

    def __init__(
        self,
        upstream_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the proxy.

        Args:
            upstream_url: Base URL of the renderer, e.g. http://127.0.0.1:3000
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.upstream_url = upstream_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            # Redirects go back to the browser untouched
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def forward(
        self,
        request: web.Request,
        path: str | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> web.Response:
        """Send ``request`` upstream, optionally under a rewritten path.

        Args:
            request: The inbound request.
            path: Path to request upstream; defaults to the inbound path.
            extra_headers: Added to the upstream request and to the response.

        Returns:
            The upstream response, or 502 if the renderer is unreachable.
        """
        target = f"{self.upstream_url}{path or request.path}"
        if request.query_string:
            target = f"{target}?{request.query_string}"

        headers = _filter_headers(request.headers)
        headers["X-Forwarded-Host"] = request.host
        headers["X-Forwarded-Proto"] = request.scheme
        if extra_headers:
            headers.update(extra_headers)

        body = await request.read() if request.can_read_body else None
        client = await self._get_client()
        try:
            upstream = await client.request(request.method, target, headers=headers, content=body)
        except httpx.HTTPError as e:
            logger.warning("Upstream request failed", url=target, error=str(e))
            return web.Response(text="Bad Gateway", status=502, content_type="text/plain")

        response_headers = _filter_headers(upstream.headers)
        if extra_headers:
            response_headers.update(extra_headers)
        return web.Response(
            body=upstream.content,
            status=upstream.status_code,
            headers=response_headers,
        )
