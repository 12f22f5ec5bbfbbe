"""Domain store backed by Supabase.

Tables and functions used:
- ``domain_config`` joined with ``wedding_projects`` (owner, subdomain, published flag)
- ``domain_verification_logs``, ``domain_analytics``, ``notifications``
- RPC ``update_domain_verification_status`` and ``get_subdomain_redirect``
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from domainedge.core.exceptions import StoreUnavailableError
from domainedge.domains.records import (
    DNSRecord,
    DomainRecord,
    DomainStatus,
    HostnameMatch,
    RedirectSeed,
    VerificationLog,
)
from domainedge.domains.storage import DomainRecordStore

logger = structlog.get_logger()

_DOMAIN_SELECT = "*,wedding_projects!inner(id,user_id,subdomain,is_published)"

# domain_config columns written by save_domain_record
_WRITABLE_COLUMNS = (
    "project_id",
    "custom_domain",
    "verification_token",
    "verification_attempts",
    "max_verification_attempts",
    "redirect_enabled",
    "expires_at",
    "error_message",
)


def record_from_row(row: dict[str, Any]) -> DomainRecord:
    """Build a DomainRecord from a ``domain_config`` row with its project embedded."""
    project = row.get("wedding_projects") or {}
    if isinstance(project, list):
        project = project[0] if project else {}
    data = dict(row)
    data["status"] = row.get("domain_status") or row.get("status")
    data["project_id"] = row.get("project_id") or project.get("id")
    data["project_subdomain"] = project.get("subdomain")
    data["project_published"] = bool(project.get("is_published", False))
    data["owner_id"] = project.get("user_id")
    if data.get("redirect_enabled") is None:
        data["redirect_enabled"] = True
    return DomainRecord.from_dict(data)


def row_from_record(record: DomainRecord) -> dict[str, Any]:
    """Columns of ``domain_config`` for an insert or update."""
    full = record.to_dict()
    row = {column: full[column] for column in _WRITABLE_COLUMNS}
    row["domain_status"] = record.status.value
    return row


class SupabaseDomainStore(DomainRecordStore):
    """Store for the hosted project/domain database, through supabase-py."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 5.0,
        client: AsyncClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            url: Supabase project URL (https://<ref>.supabase.co).
            api_key: Supabase API key.
            timeout: Seconds allowed for one store request.
            client: Existing async client (tests pass a fake one).
        """
        self.url = url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> AsyncClient:
        """Get or create the Supabase client."""
        if self._client is None:
            self._client = await acreate_client(self.url, self._api_key)
        return self._client

    async def close(self) -> None:
        """Close the client if this store created it."""
        if self._client is not None and self._owns_client:
            await self._client.postgrest.aclose()
        if self._owns_client:
            self._client = None

    async def _execute(self, query: Any, action: str) -> Any:
        """Run one query builder and return its ``data``.

        Raises:
            StoreUnavailableError: On timeouts, transport errors or a PostgREST error.
        """
        try:
            response = await asyncio.wait_for(query.execute(), timeout=self._timeout)
        except TimeoutError as e:
            raise StoreUnavailableError("Domain store request timed out", details={"action": action}) from e
        except APIError as e:
            logger.warning("Domain store request failed", action=action, code=e.code, error=e.message)
            raise StoreUnavailableError(
                "Domain store request failed",
                details={"action": action, "code": e.code},
            ) from e
        except httpx.HTTPError as e:
            raise StoreUnavailableError(
                "Domain store is unreachable",
                details={"action": action, "error": str(e)},
            ) from e
        return response.data

    async def _select_domains(self, filters: dict[str, Any], limit: int | None = None) -> list[DomainRecord]:
        client = await self._get_client()
        query = client.table("domain_config").select(_DOMAIN_SELECT)
        for column, value in filters.items():
            query = query.eq(column, value)
        if limit is not None:
            query = query.limit(limit)
        rows = await self._execute(query, "select_domains") or []
        try:
            return [record_from_row(row) for row in rows]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StoreUnavailableError("Domain store returned malformed data") from e

    async def get_domain_record(self, domain_id: str) -> DomainRecord | None:
        records = await self._select_domains({"id": domain_id}, limit=1)
        return records[0] if records else None

    async def find_domain_record_by_hostname(self, hostname: str) -> HostnameMatch | None:
        records = await self._select_domains(
            {
                "custom_domain": hostname.lower(),
                "domain_status": DomainStatus.VERIFIED.value,
            },
            limit=1,
        )
        if not records or not records[0].project_subdomain:
            return None
        record = records[0]
        return HostnameMatch(
            record=record,
            project_subdomain=record.project_subdomain,
            is_published=record.project_published,
        )

    async def find_domain_record_by_custom_domain(self, custom_domain: str) -> DomainRecord | None:
        records = await self._select_domains({"custom_domain": custom_domain.lower()}, limit=1)
        return records[0] if records else None

    async def find_domain_record_by_project(self, project_id: str) -> DomainRecord | None:
        records = await self._select_domains({"project_id": project_id}, limit=1)
        return records[0] if records else None

    async def find_redirect_target(self, subdomain: str) -> str | None:
        client = await self._get_client()
        result = await self._execute(
            client.rpc("get_subdomain_redirect", {"subdomain_param": subdomain}),
            "get_subdomain_redirect",
        )
        # Scalar functions answer with a bare value (or null)
        if isinstance(result, list):
            result = result[0] if result else None
        if isinstance(result, dict):
            result = result.get("get_subdomain_redirect") or result.get("redirect_url")
        return result or None

    async def list_redirect_entries(self) -> list[RedirectSeed]:
        records = await self._select_domains(
            {
                "domain_status": DomainStatus.VERIFIED.value,
                "wedding_projects.is_published": "true",
            }
        )
        return [
            RedirectSeed(
                subdomain=record.project_subdomain,
                custom_domain=record.custom_domain,
                should_redirect=record.redirect_enabled,
            )
            for record in records
            if record.project_subdomain and record.project_published
        ]

    async def update_domain_status(
        self,
        domain_id: str,
        status: DomainStatus,
        error_message: str | None = None,
        dns_records: list[DNSRecord] | None = None,
    ) -> None:
        client = await self._get_client()
        await self._execute(
            client.rpc(
                "update_domain_verification_status",
                {
                    "domain_id_param": domain_id,
                    "new_status": status.value,
                    "error_msg": error_message,
                    "dns_records": [record.to_dict() for record in dns_records or []],
                },
            ),
            "update_domain_verification_status",
        )

    async def save_domain_record(self, record: DomainRecord) -> DomainRecord:
        client = await self._get_client()
        row = row_from_record(record)
        existing = await self._execute(
            client.table("domain_config").select("id").eq("id", record.id),
            "find_domain",
        )
        if existing:
            row["updated_at"] = record.to_dict()["updated_at"]
            await self._execute(
                client.table("domain_config").update(row).eq("id", record.id),
                "update_domain",
            )
        else:
            row["id"] = record.id
            await self._execute(client.table("domain_config").insert(row), "insert_domain")
        return record

    async def delete_domain_record(self, domain_id: str) -> bool:
        client = await self._get_client()
        deleted = await self._execute(
            client.table("domain_config").delete().eq("id", domain_id),
            "delete_domain",
        )
        return bool(deleted)

    async def list_verification_logs(self, domain_id: str, limit: int = 10) -> list[VerificationLog]:
        client = await self._get_client()
        rows = await self._execute(
            client.table("domain_verification_logs")
            .select("*")
            .eq("domain_config_id", domain_id)
            .order("checked_at", desc=True)
            .limit(limit),
            "list_verification_logs",
        ) or []
        return [
            VerificationLog.from_dict(
                {
                    "domain_id": row.get("domain_config_id", domain_id),
                    "attempt": row.get("attempt_number") or row.get("attempt"),
                    "result": row.get("verification_result") or row.get("result"),
                    "error_message": row.get("error_message"),
                    "dns_records": row.get("dns_records") or [],
                    "response_time_ms": row.get("response_time_ms"),
                    "checked_at": row.get("checked_at"),
                }
            )
            for row in rows
        ]

    async def record_visit(self, domain_config_id: str, metadata: dict[str, Any]) -> None:
        client = await self._get_client()
        await self._execute(
            client.table("domain_analytics").insert({"domain_config_id": domain_config_id, **metadata}),
            "record_visit",
        )

    async def create_notification(self, user_id: str, title: str, message: str, data: dict[str, Any]) -> None:
        client = await self._get_client()
        await self._execute(
            client.table("notifications").insert(
                {
                    "user_id": user_id,
                    "type": data.get("type", "domain_verified"),
                    "title": title,
                    "message": message,
                    "data": data,
                }
            ),
            "create_notification",
        )
