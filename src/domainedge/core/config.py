"""Configuration types with environment variable support.

All settings can be configured via environment variables with the DOMAINEDGE_ prefix.
Example: DOMAINEDGE_CACHE_TTL=600 keeps redirect cache entries for 10 minutes.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


def apply_file_config(file_config: dict[str, Any]) -> dict[str, str]:
    """Convert a flattened config file into DOMAINEDGE_* environment values.

    Lists are joined as JSON so pydantic-settings can parse them back.
    """
    env: dict[str, str] = {}
    for key, value in file_config.items():
        name = f"DOMAINEDGE_{key.upper()}"
        if isinstance(value, (list, tuple)):
            env[name] = json.dumps(list(value))
        elif isinstance(value, bool):
            env[name] = str(value).lower()
        elif value is not None:
            env[name] = str(value)
    return env


_SETTINGS = {
    "env_file": ".env",
    "env_file_encoding": "utf-8",
    "extra": "ignore",
}


class DNSConfig(BaseSettings):
    """DNS verification settings.

    Environment variables:
    - DOMAINEDGE_DNS_PLATFORM_NAME: Label used in the _<platform>-verification record
    - DOMAINEDGE_DNS_TIMEOUT: Per-attempt lookup timeout (seconds)
    - DOMAINEDGE_DNS_MAX_RETRIES: Attempts before a lookup is reported failed
    - DOMAINEDGE_DNS_RETRY_DELAY: Base backoff (seconds), multiplied by attempt number
    """

    model_config = SettingsConfigDict(env_prefix="DOMAINEDGE_DNS_", **_SETTINGS)

    platform_name: str = Field(
        default="einvite",
        description="Platform label in the TXT record name (_<platform>-verification.<domain>).",
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout in seconds for a single DNS lookup attempt.",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Maximum lookup attempts before reporting failure.",
    )
    retry_delay: float = Field(
        default=2.0,
        ge=0,
        description="Base retry delay in seconds; attempt N waits retry_delay * N.",
    )
    nameservers: list[str] = Field(
        default_factory=list,
        description="Resolver addresses. Empty uses the system resolver.",
    )
    propagation_resolvers: list[str] = Field(
        default_factory=lambda: ["8.8.8.8", "1.1.1.1", "208.67.222.222"],
        description="Public resolvers queried by the propagation check.",
    )
    propagation_threshold: float = Field(
        default=0.7,
        ge=0,
        le=1,
        description="Fraction of resolvers that must see the token to count as propagated.",
    )


class CacheConfig(BaseSettings):
    """Redirect cache settings."""

    model_config = SettingsConfigDict(env_prefix="DOMAINEDGE_CACHE_", **_SETTINGS)

    ttl: float = Field(
        default=300.0,
        gt=0,
        description="Seconds a redirect cache entry stays valid (5 minutes default).",
    )
    max_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum cached subdomains before the oldest entry is evicted.",
    )
    cleanup_interval: float = Field(
        default=120.0,
        gt=0,
        description="Seconds between proactive sweeps of expired entries.",
    )
    warm_on_startup: bool = Field(
        default=True,
        description="Bulk-load verified redirects from the store when the server starts.",
    )


class RouterConfig(BaseSettings):
    """Edge routing settings."""

    model_config = SettingsConfigDict(env_prefix="DOMAINEDGE_ROUTER_", **_SETTINGS)

    platform_hosts: list[str] = Field(
        default_factory=lambda: ["einvite.onrender.com"],
        description="Hostnames that serve the platform itself (never custom domains).",
    )
    preview_suffixes: list[str] = Field(
        default_factory=lambda: [
            ".onrender.com",
            ".vercel.app",
            ".netlify.app",
            ".herokuapp.com",
            ".fly.dev",
        ],
        description="PaaS preview host suffixes treated as platform hosts.",
    )
    excluded_prefixes: list[str] = Field(
        default_factory=lambda: [
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
        ],
        description="Path prefixes that bypass custom domain routing.",
    )
    redirect_cache_control: str = Field(
        default="public, max-age=3600, immutable",
        description="Cache-Control header sent with subdomain to custom domain redirects.",
    )


class StoreConfig(BaseSettings):
    """External project/domain store settings."""

    model_config = SettingsConfigDict(env_prefix="DOMAINEDGE_STORE_", **_SETTINGS)

    backend: str = Field(
        default="json",
        pattern="^(json|supabase)$",
        description="Store backend: 'json' (self-hosted file) or 'supabase' (hosted Supabase project).",
    )
    json_path: str = Field(
        default="domains.json",
        description="Path to the JSON file holding domain records.",
    )
    supabase_url: str | None = Field(
        default=None,
        description="Supabase project URL, e.g. https://xyz.supabase.co",
    )
    supabase_key: str | None = Field(
        default=None,
        repr=False,
        description="Supabase API key sent as apikey and bearer token.",
    )
    timeout: float = Field(
        default=5.0,
        gt=0,
        description="HTTP timeout in seconds for store requests.",
    )


class ServerConfig(BaseSettings):
    """Edge server and verification API settings."""

    model_config = SettingsConfigDict(env_prefix="DOMAINEDGE_", **_SETTINGS)

    bind: str = Field(
        default="0.0.0.0:8080",
        description="host:port the edge server listens on.",
    )
    upstream_url: str = Field(
        default="http://127.0.0.1:3000",
        description="Renderer that serves tenant pages after routing.",
    )
    verification_window_days: int = Field(
        default=7,
        ge=1,
        description="Days a newly configured domain has to pass verification.",
    )
    max_verification_attempts: int = Field(
        default=5,
        ge=1,
        description="Verification attempts allowed before the domain must be reset.",
    )


class DomainEdgeConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.dns.timeout)
        print(config.cache.max_size)
    """

    model_config = SettingsConfigDict(env_prefix="DOMAINEDGE_", **_SETTINGS)

    @property
    def dns(self) -> DNSConfig:
        """Get DNS verification configuration."""
        return DNSConfig()

    @property
    def cache(self) -> CacheConfig:
        """Get redirect cache configuration."""
        return CacheConfig()

    @property
    def router(self) -> RouterConfig:
        """Get edge router configuration."""
        return RouterConfig()

    @property
    def store(self) -> StoreConfig:
        """Get store configuration."""
        return StoreConfig()

    @property
    def server(self) -> ServerConfig:
        """Get server configuration."""
        return ServerConfig()

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display."""
        return {
            "dns": self.dns.model_dump(),
            "cache": self.cache.model_dump(),
            "router": self.router.model_dump(),
            "store": self.store.model_dump(exclude={"supabase_key"}),
            "server": self.server.model_dump(),
        }


_config: DomainEdgeConfig | None = None


def get_config() -> DomainEdgeConfig:
    """Get the global configuration instance.

    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = DomainEdgeConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    Useful for testing.
    """
    global _config
    _config = None
