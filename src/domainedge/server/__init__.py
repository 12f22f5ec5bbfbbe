"""Edge server: routing middleware, verification API and renderer proxy."""

from domainedge.server.app import EdgeServer, create_store, run_server
from domainedge.server.proxy import SiteProxy

__all__ = ["EdgeServer", "SiteProxy", "create_store", "run_server"]
