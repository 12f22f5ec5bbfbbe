"""Project/domain store interface and a JSON file implementation.

The store owns domain records; domainedge only reads them and writes back
verification status, visits and notifications. ``JsonDomainStore`` is
suitable for self-hosted deployments; ``SupabaseDomainStore`` (see
``domainedge.domains.supabase``) talks to the hosted database.

Storage file format (domains.json):
    {
        "domains": {
            "d9b2...": {
                "id": "d9b2...",
                "project_id": "p-42",
                "custom_domain": "ourwedding.com",
                "status": "verified",
                "verification_token": "verify-k2j4h5g6-lz8q1x2c",
                "project_subdomain": "john-jane-2024",
                "project_published": true,
                ...
            }
        },
        "verification_logs": [...],
        "visits": [...],
        "notifications": [...]
    }
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from domainedge.core.exceptions import StoreUnavailableError
from domainedge.domains.records import (
    DNSRecord,
    DomainRecord,
    DomainStatus,
    HostnameMatch,
    RedirectSeed,
    VerificationLog,
)

logger = structlog.get_logger()

# Per-domain history kept by the JSON store
MAX_LOGS_PER_DOMAIN = 50


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class DomainRecordStore(ABC):
    """Interface to the external project/domain store.

    Implementations raise StoreUnavailableError when the backend cannot be
    reached or answers with an error. "Not found" is never an error: lookups
    return None.
    """

    @abstractmethod
    async def get_domain_record(self, domain_id: str) -> DomainRecord | None:
        """Load one domain record by id."""

    @abstractmethod
    async def find_domain_record_by_hostname(self, hostname: str) -> HostnameMatch | None:
        """Find the verified record serving ``hostname`` and its project."""

    @abstractmethod
    async def find_domain_record_by_custom_domain(self, custom_domain: str) -> DomainRecord | None:
        """Find a record by custom domain regardless of status."""

    @abstractmethod
    async def find_domain_record_by_project(self, project_id: str) -> DomainRecord | None:
        """Find the domain configured for a project."""

    @abstractmethod
    async def find_redirect_target(self, subdomain: str) -> str | None:
        """Return ``https://<custom domain>`` if ``subdomain`` should redirect."""

    @abstractmethod
    async def list_redirect_entries(self) -> list[RedirectSeed]:
        """All verified mappings of published projects (cache warm-up).

        ``should_redirect`` carries the record's ``redirect_enabled`` flag.
        """

    @abstractmethod
    async def update_domain_status(
        self,
        domain_id: str,
        status: DomainStatus,
        error_message: str | None = None,
        dns_records: list[DNSRecord] | None = None,
    ) -> None:
        """Record the outcome of a verification attempt.

        A failed outcome increments ``verification_attempts``; a verified
        outcome sets ``last_verified_at``.
        """

    @abstractmethod
    async def save_domain_record(self, record: DomainRecord) -> DomainRecord:
        """Create or replace a domain record."""

    @abstractmethod
    async def delete_domain_record(self, domain_id: str) -> bool:
        """Delete a domain record. Returns False if it did not exist."""

    @abstractmethod
    async def list_verification_logs(self, domain_id: str, limit: int = 10) -> list[VerificationLog]:
        """Most recent verification attempts first."""

    @abstractmethod
    async def record_visit(self, domain_config_id: str, metadata: dict[str, Any]) -> None:
        """Store one analytics event for a custom domain visit."""

    @abstractmethod
    async def create_notification(self, user_id: str, title: str, message: str, data: dict[str, Any]) -> None:
        """Store a notification for the project owner."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""


class JsonDomainStore(DomainRecordStore):
    """JSON file-based domain store.

    Safe for concurrent coroutines via an asyncio lock. Suitable for
    self-hosted deployments with moderate domain counts.
    """

    def __init__(self, storage_path: str | Path = "domains.json") -> None:
        """Initialize domain store.

        Args:
            storage_path: Path to the JSON storage file.
        """
        self.storage_path = Path(storage_path)
        self._lock = asyncio.Lock()
        self._data: dict[str, Any] | None = None

    async def _load(self) -> dict[str, Any]:
        """Load store contents from the storage file."""
        if self._data is not None:
            return self._data

        data: dict[str, Any] = {}
        if self.storage_path.exists():
            try:
                content = await asyncio.to_thread(self.storage_path.read_text, encoding="utf-8")
                data = json.loads(content) if content.strip() else {}
            except json.JSONDecodeError as e:
                raise StoreUnavailableError(
                    f"Domain store file is corrupt: {self.storage_path}",
                    details={"error": str(e)},
                ) from e
            except OSError as e:
                raise StoreUnavailableError(f"Cannot read domain store: {e}") from e

        self._data = {
            "domains": {
                domain_id: DomainRecord.from_dict(record)
                for domain_id, record in data.get("domains", {}).items()
            },
            "verification_logs": [VerificationLog.from_dict(log) for log in data.get("verification_logs", [])],
            "visits": list(data.get("visits", [])),
            "notifications": list(data.get("notifications", [])),
        }
        return self._data

    async def _save(self) -> None:
        """Write store contents to the storage file."""
        assert self._data is not None
        data = {
            "domains": {domain_id: record.to_dict() for domain_id, record in self._data["domains"].items()},
            "verification_logs": [log.to_dict() for log in self._data["verification_logs"]],
            "visits": self._data["visits"],
            "notifications": self._data["notifications"],
        }
        content = json.dumps(data, indent=2)
        try:
            await asyncio.to_thread(self.storage_path.write_text, content, encoding="utf-8")
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write domain store: {e}") from e

    async def _domains(self) -> dict[str, DomainRecord]:
        return (await self._load())["domains"]

    async def get_domain_record(self, domain_id: str) -> DomainRecord | None:
        async with self._lock:
            return (await self._domains()).get(domain_id)

    async def find_domain_record_by_hostname(self, hostname: str) -> HostnameMatch | None:
        hostname = hostname.lower()
        async with self._lock:
            for record in (await self._domains()).values():
                if (
                    record.custom_domain == hostname
                    and record.status == DomainStatus.VERIFIED
                    and record.project_subdomain
                ):
                    return HostnameMatch(
                        record=record,
                        project_subdomain=record.project_subdomain,
                        is_published=record.project_published,
                    )
        return None

    async def find_domain_record_by_custom_domain(self, custom_domain: str) -> DomainRecord | None:
        custom_domain = custom_domain.lower()
        async with self._lock:
            for record in (await self._domains()).values():
                if record.custom_domain == custom_domain:
                    return record
        return None

    async def find_domain_record_by_project(self, project_id: str) -> DomainRecord | None:
        async with self._lock:
            for record in (await self._domains()).values():
                if record.project_id == project_id:
                    return record
        return None

    @staticmethod
    def _redirects(record: DomainRecord) -> bool:
        return (
            record.status == DomainStatus.VERIFIED
            and record.project_published
            and record.redirect_enabled
            and bool(record.project_subdomain)
        )

    async def find_redirect_target(self, subdomain: str) -> str | None:
        async with self._lock:
            for record in (await self._domains()).values():
                if record.project_subdomain == subdomain and self._redirects(record):
                    return f"https://{record.custom_domain}"
        return None

    async def list_redirect_entries(self) -> list[RedirectSeed]:
        async with self._lock:
            return [
                RedirectSeed(
                    subdomain=record.project_subdomain,
                    custom_domain=record.custom_domain,
                    should_redirect=record.redirect_enabled,
                )
                for record in (await self._domains()).values()
                if record.project_subdomain
                and record.status == DomainStatus.VERIFIED
                and record.project_published
            ]

    async def update_domain_status(
        self,
        domain_id: str,
        status: DomainStatus,
        error_message: str | None = None,
        dns_records: list[DNSRecord] | None = None,
    ) -> None:
        async with self._lock:
            data = await self._load()
            record = data["domains"].get(domain_id)
            if record is None:
                raise StoreUnavailableError(
                    "Failed to update verification status",
                    details={"domain_id": domain_id, "error": "record not found"},
                )

            now = _utc_now()
            record.status = status
            record.updated_at = now
            if status == DomainStatus.VERIFIED:
                record.last_verified_at = now
                record.error_message = None
            else:
                record.verification_attempts += 1
                record.error_message = error_message

            data["verification_logs"].append(
                VerificationLog(
                    domain_id=domain_id,
                    attempt=record.verification_attempts,
                    result="success" if status == DomainStatus.VERIFIED else "failed",
                    error_message=error_message,
                    dns_records=list(dns_records or []),
                    checked_at=now,
                )
            )
            own_logs = [log for log in data["verification_logs"] if log.domain_id == domain_id]
            if len(own_logs) > MAX_LOGS_PER_DOMAIN:
                stale = {id(log) for log in own_logs[:-MAX_LOGS_PER_DOMAIN]}
                data["verification_logs"] = [log for log in data["verification_logs"] if id(log) not in stale]

            await self._save()

    async def save_domain_record(self, record: DomainRecord) -> DomainRecord:
        async with self._lock:
            data = await self._load()
            record.updated_at = _utc_now()
            data["domains"][record.id] = record
            await self._save()
        return record

    async def delete_domain_record(self, domain_id: str) -> bool:
        async with self._lock:
            data = await self._load()
            if domain_id not in data["domains"]:
                return False
            del data["domains"][domain_id]
            data["verification_logs"] = [log for log in data["verification_logs"] if log.domain_id != domain_id]
            await self._save()
            return True

    async def list_verification_logs(self, domain_id: str, limit: int = 10) -> list[VerificationLog]:
        async with self._lock:
            logs = [log for log in (await self._load())["verification_logs"] if log.domain_id == domain_id]
        logs.sort(key=lambda log: (log.checked_at, log.attempt), reverse=True)
        return logs[:limit]

    async def record_visit(self, domain_config_id: str, metadata: dict[str, Any]) -> None:
        async with self._lock:
            data = await self._load()
            data["visits"].append(
                {
                    "domain_config_id": domain_config_id,
                    "visited_at": _utc_now().isoformat(),
                    **metadata,
                }
            )
            await self._save()

    async def create_notification(self, user_id: str, title: str, message: str, data: dict[str, Any]) -> None:
        async with self._lock:
            store = await self._load()
            store["notifications"].append(
                {
                    "user_id": user_id,
                    "type": data.get("type", "domain_verified"),
                    "title": title,
                    "message": message,
                    "data": data,
                    "created_at": _utc_now().isoformat(),
                }
            )
            await self._save()

    def invalidate_cache(self) -> None:
        """Drop the in-memory copy.

        Call this after external modifications to the storage file.
        """
        self._data = None
