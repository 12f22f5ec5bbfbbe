"""Domain records as exchanged with the project/domain store.

A record is owned by the external store; the verification flow reads it and
writes back a status. JSON shape (one entry of domains.json, or one row from
the store API):

    {
        "id": "d9b2...",
        "project_id": "p-42",
        "custom_domain": "ourwedding.com",
        "status": "verified",
        "verification_token": "verify-k2j4h5g6-lz8q1x2c",
        "verification_attempts": 1,
        "max_verification_attempts": 5,
        "expires_at": "2024-01-22T10:00:00+00:00",
        "last_verified_at": "2024-01-15T10:30:00+00:00",
        "project_subdomain": "john-jane-2024",
        "project_published": true,
        "redirect_enabled": true
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class DomainStatus(Enum):
    """Verification status of a custom domain."""

    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class DNSRecord:
    """A DNS record observed during verification."""

    name: str
    type: str
    value: str
    ttl: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "type": self.type, "value": self.value}
        if self.ttl is not None:
            data["ttl"] = self.ttl
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DNSRecord:
        return cls(
            name=data["name"],
            type=data["type"],
            value=data["value"],
            ttl=data.get("ttl"),
        )


@dataclass
class DomainRecord:
    """A custom domain attached to a tenant project."""

    id: str
    project_id: str
    custom_domain: str
    verification_token: str
    status: DomainStatus = DomainStatus.PENDING
    verification_attempts: int = 0
    max_verification_attempts: int = 5
    expires_at: datetime | None = None
    last_verified_at: datetime | None = None
    error_message: str | None = None
    project_subdomain: str | None = None
    owner_id: str | None = None
    project_published: bool = True
    redirect_enabled: bool = True
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the verification window has passed."""
        if self.expires_at is None:
            return False
        return (now or _utc_now()) > self.expires_at

    def effective_status(self, now: datetime | None = None) -> DomainStatus:
        """Status as seen at ``now``.

        Expiry is computed, never stored: an unverified record past its
        window reads as EXPIRED.
        """
        if self.status != DomainStatus.VERIFIED and self.is_expired(now):
            return DomainStatus.EXPIRED
        return self.status

    @property
    def attempts_exhausted(self) -> bool:
        return self.verification_attempts >= self.max_verification_attempts

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "custom_domain": self.custom_domain,
            "status": self.status.value,
            "verification_token": self.verification_token,
            "verification_attempts": self.verification_attempts,
            "max_verification_attempts": self.max_verification_attempts,
            "expires_at": _format_datetime(self.expires_at),
            "last_verified_at": _format_datetime(self.last_verified_at),
            "error_message": self.error_message,
            "project_subdomain": self.project_subdomain,
            "owner_id": self.owner_id,
            "project_published": self.project_published,
            "redirect_enabled": self.redirect_enabled,
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainRecord:
        """Create from dictionary (JSON deserialization)."""
        return cls(
            id=str(data["id"]),
            project_id=str(data["project_id"]),
            custom_domain=data["custom_domain"],
            verification_token=data.get("verification_token") or "",
            status=DomainStatus(data.get("status") or DomainStatus.PENDING.value),
            verification_attempts=int(data.get("verification_attempts") or 0),
            max_verification_attempts=int(data.get("max_verification_attempts") or 5),
            expires_at=_parse_datetime(data.get("expires_at")),
            last_verified_at=_parse_datetime(data.get("last_verified_at")),
            error_message=data.get("error_message"),
            project_subdomain=data.get("project_subdomain"),
            owner_id=data.get("owner_id"),
            project_published=data.get("project_published", True),
            redirect_enabled=data.get("redirect_enabled", True),
            created_at=_parse_datetime(data.get("created_at")) or _utc_now(),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class HostnameMatch:
    """A verified custom domain resolved to the project that serves it."""

    record: DomainRecord
    project_subdomain: str
    is_published: bool


@dataclass
class RedirectSeed:
    """One subdomain -> custom domain mapping used to warm the redirect cache."""

    subdomain: str
    custom_domain: str | None
    should_redirect: bool = True


@dataclass
class VerificationLog:
    """One verification attempt as recorded by the store."""

    domain_id: str
    attempt: int
    result: str
    error_message: str | None = None
    dns_records: list[DNSRecord] = field(default_factory=list)
    response_time_ms: int | None = None
    checked_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain_id": self.domain_id,
            "attempt": self.attempt,
            "result": self.result,
            "error_message": self.error_message,
            "dns_records": [record.to_dict() for record in self.dns_records],
            "response_time_ms": self.response_time_ms,
            "checked_at": self.checked_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationLog:
        return cls(
            domain_id=str(data["domain_id"]),
            attempt=int(data.get("attempt") or 0),
            result=data.get("result") or "failed",
            error_message=data.get("error_message"),
            dns_records=[DNSRecord.from_dict(r) for r in data.get("dns_records") or []],
            response_time_ms=data.get("response_time_ms"),
            checked_at=_parse_datetime(data.get("checked_at")) or _utc_now(),
        )
