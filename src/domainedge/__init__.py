"""domainedge - custom domain verification and edge routing for tenant sites."""

__version__ = "0.1.0"
