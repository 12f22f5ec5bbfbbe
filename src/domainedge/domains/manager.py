"""Custom domain lifecycle: configuration, verification and status.

Usage:
    manager = DomainVerificationManager(store, verifier, cache)

    # Attach a domain to a project (issues a token, opens a 7-day window)
    record = await manager.configure_domain("p-42", "ourwedding.com", "john-jane-2024")

    # After the customer published the TXT record
    outcome = await manager.verify_domain(record.id)

Verification runs strictly in order: load record, already-verified
shortcut, expiry, token format, attempt limit, DNS lookup, store update,
cache update, notification. A step never runs before the ones it depends on.
"""

from __future__ import annotations

import asyncio
import uuid
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from domainedge.cache.redirect import RedirectCache
from domainedge.core.exceptions import (
    DomainConflictError,
    DomainNotFoundError,
    DomainValidationError,
    VerificationExpiredError,
    VerificationRateLimitedError,
)
from domainedge.core.tasks import BackgroundDispatcher
from domainedge.domains.records import DomainRecord, DomainStatus, VerificationLog
from domainedge.domains.storage import DomainRecordStore
from domainedge.domains.tokens import generate_verification_token, is_valid_verification_token
from domainedge.domains.validation import validate_domain
from domainedge.domains.verification import DNSInstructions, DNSVerificationResult, DNSVerifier
from domainedge.observability.metrics import VERIFICATION_ATTEMPTS

logger = structlog.get_logger()


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


@dataclass
class VerificationOutcome:
    """Result of DomainVerificationManager.verify_domain()."""

    success: bool
    domain_status: DomainStatus
    verification_result: DNSVerificationResult
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "verification_result": self.verification_result.to_dict(),
            "domain_status": self.domain_status.value,
        }
        if self.message:
            data["message"] = self.message
        return data


@dataclass
class DomainStatusReport:
    """Everything the dashboard shows about one configured domain."""

    record: DomainRecord
    status: DomainStatus
    instructions: DNSInstructions | None = None
    logs: list[VerificationLog] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        record = self.record
        return {
            "domain_config": {
                "id": record.id,
                "project_id": record.project_id,
                "custom_domain": record.custom_domain,
                "verification_token": record.verification_token,
                "domain_status": self.status.value,
                "verification_attempts": record.verification_attempts,
                "max_verification_attempts": record.max_verification_attempts,
                "redirect_enabled": record.redirect_enabled,
                "last_verified_at": record.last_verified_at.isoformat() if record.last_verified_at else None,
                "expires_at": record.expires_at.isoformat() if record.expires_at else None,
                "error_message": record.error_message,
            },
            "dns_instructions": self.instructions.to_dict() if self.instructions else None,
            "verification_logs": [log.to_dict() for log in self.logs],
        }


class DomainVerificationManager:
    """Coordinates the store, the DNS verifier and the redirect cache."""

    def __init__(
        self,
        store: DomainRecordStore,
        verifier: DNSVerifier,
        cache: RedirectCache,
        dispatcher: BackgroundDispatcher | None = None,
        verification_window: timedelta = timedelta(days=7),
        max_verification_attempts: int = 5,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize domain manager.

        Args:
            store: Project/domain store.
            verifier: DNS verifier used for ownership checks.
            cache: Redirect cache updated after successful verification.
            dispatcher: Runs notifications without blocking the caller.
            verification_window: Time a new configuration has to verify.
            max_verification_attempts: Attempt ceiling for new configurations.
            now: UTC clock.
        """
        self.store = store
        self.verifier = verifier
        self.cache = cache
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.verification_window = verification_window
        self.max_verification_attempts = max_verification_attempts
        self._now = now
        # entries vanish once no verification of that domain holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def _load(self, domain_id: str) -> DomainRecord:
        record = await self.store.get_domain_record(domain_id)
        if record is None:
            raise DomainNotFoundError("Domain configuration not found", details={"domain_id": domain_id})
        return record

    async def verify_domain(self, domain_id: str, force_recheck: bool = False) -> VerificationOutcome:
        """Verify ownership of a configured domain.

        Args:
            domain_id: Id of the domain record.
            force_recheck: Run the DNS check even if already verified.

        Returns:
            VerificationOutcome; DNS failures are reported in it, not raised.

        Raises:
            DomainNotFoundError: No record with this id.
            VerificationExpiredError: The verification window has passed.
            DomainValidationError: The stored token is malformed.
            VerificationRateLimitedError: Attempts are exhausted.
            StoreUnavailableError: The store could not be read or updated.
        """
        # concurrent checks of one domain must not race past the attempt limit
        lock = self._locks.get(domain_id)
        if lock is None:
            lock = self._locks[domain_id] = asyncio.Lock()
        async with lock:
            return await self._verify_locked(domain_id, force_recheck)

    async def _verify_locked(self, domain_id: str, force_recheck: bool) -> VerificationOutcome:
        record = await self._load(domain_id)

        if record.status == DomainStatus.VERIFIED and not force_recheck:
            VERIFICATION_ATTEMPTS.labels(result="skipped").inc()
            return VerificationOutcome(
                success=True,
                domain_status=DomainStatus.VERIFIED,
                verification_result=DNSVerificationResult(success=True, found=True),
                message="Domain is already verified",
            )

        if record.is_expired(self._now()):
            raise VerificationExpiredError(
                "Domain verification has expired. Please reconfigure your domain.",
                details={"domain_id": domain_id},
            )

        if not is_valid_verification_token(record.verification_token):
            raise DomainValidationError(
                "Verification token is invalid. Please reconfigure your domain.",
                details={"domain_id": domain_id},
            )

        if record.attempts_exhausted:
            raise VerificationRateLimitedError(
                "Maximum verification attempts reached. Please wait before trying again.",
                details={
                    "verification_attempts": record.verification_attempts,
                    "max_verification_attempts": record.max_verification_attempts,
                },
            )

        result = await self.verifier.verify_ownership(record.custom_domain, record.verification_token)

        if result.success:
            status = DomainStatus.VERIFIED
            error_message = None
        else:
            status = DomainStatus.FAILED
            error_message = result.error or "Verification failed"

        await self.store.update_domain_status(domain_id, status, error_message, result.records)
        VERIFICATION_ATTEMPTS.labels(result=status.value).inc()

        if status == DomainStatus.VERIFIED:
            logger.info("Domain verified", domain=record.custom_domain, subdomain=record.project_subdomain)
            self._cache_verified(record)
            self._notify_verified(record)
        else:
            logger.info("Domain verification failed", domain=record.custom_domain, error=error_message)

        return VerificationOutcome(
            success=status == DomainStatus.VERIFIED,
            domain_status=status,
            verification_result=result,
        )

    def _cache_verified(self, record: DomainRecord) -> None:
        subdomain = record.project_subdomain
        if not subdomain:
            return
        previous = self.cache.peek(subdomain)
        if previous and previous.custom_domain and previous.custom_domain != record.custom_domain:
            self.cache.invalidate_domain(previous.custom_domain)
        if record.project_published:
            self.cache.set(subdomain, record.custom_domain, record.redirect_enabled)
        else:
            self.cache.invalidate_project(subdomain)

    def _notify_verified(self, record: DomainRecord) -> None:
        if not record.owner_id:
            return
        self.dispatcher.dispatch(
            "domain-verified-notification",
            self.store.create_notification,
            record.owner_id,
            "Custom Domain Verified!",
            f"Your custom domain {record.custom_domain} has been verified and is now live.",
            {
                "type": "domain_verified",
                "custom_domain": record.custom_domain,
                "subdomain": record.project_subdomain,
                "website_url": f"https://{record.custom_domain}",
            },
        )

    def _validated(self, custom_domain: str) -> str:
        result = validate_domain(custom_domain)
        if not result.is_valid:
            raise DomainValidationError(result.error or "Invalid domain", details={"domain": custom_domain})
        return result.domain

    async def _ensure_available(self, custom_domain: str, record_id: str | None, project_id: str) -> None:
        existing = await self.store.find_domain_record_by_custom_domain(custom_domain)
        if existing and existing.id != record_id and existing.project_id != project_id:
            raise DomainConflictError(
                "This domain is already in use by another project",
                details={"domain": custom_domain},
            )

    def _reset_verification(self, record: DomainRecord) -> None:
        now = self._now()
        record.verification_token = generate_verification_token(now.timestamp())
        record.status = DomainStatus.PENDING
        record.verification_attempts = 0
        record.max_verification_attempts = self.max_verification_attempts
        record.expires_at = now + self.verification_window
        record.error_message = None

    async def configure_domain(
        self,
        project_id: str,
        custom_domain: str,
        project_subdomain: str | None = None,
        redirect_enabled: bool = True,
        owner_id: str | None = None,
    ) -> tuple[DomainRecord, bool]:
        """Attach ``custom_domain`` to a project, or replace its current domain.

        Returns:
            The saved record and whether it was newly created.

        Raises:
            DomainValidationError: The domain fails validation.
            DomainConflictError: Another project already uses the domain.
        """
        domain = self._validated(custom_domain)
        await self._ensure_available(domain, None, project_id)

        record = await self.store.find_domain_record_by_project(project_id)
        created = record is None
        if record is None:
            record = DomainRecord(
                id=str(uuid.uuid4()),
                project_id=project_id,
                custom_domain=domain,
                verification_token="",
                created_at=self._now(),
            )
        elif record.custom_domain != domain:
            self.cache.invalidate_domain(record.custom_domain)

        record.custom_domain = domain
        record.redirect_enabled = redirect_enabled
        if project_subdomain is not None:
            record.project_subdomain = project_subdomain
        if owner_id is not None:
            record.owner_id = owner_id
        self._reset_verification(record)

        await self.store.save_domain_record(record)
        if record.project_subdomain:
            self.cache.invalidate_project(record.project_subdomain)

        logger.info("Domain configured", domain=domain, project_id=project_id, created=created)
        return record, created

    async def update_domain(
        self,
        domain_id: str,
        redirect_enabled: bool | None = None,
        custom_domain: str | None = None,
    ) -> DomainRecord:
        """Change the redirect flag or the domain itself.

        A new domain restarts verification with a fresh token and window.
        """
        new_domain = self._validated(custom_domain) if custom_domain else None
        record = await self._load(domain_id)

        if redirect_enabled is not None:
            record.redirect_enabled = redirect_enabled

        if new_domain and new_domain != record.custom_domain:
            await self._ensure_available(new_domain, record.id, record.project_id)
            self.cache.invalidate_domain(record.custom_domain)
            record.custom_domain = new_domain
            self._reset_verification(record)

        await self.store.save_domain_record(record)
        if record.project_subdomain:
            self.cache.invalidate_project(record.project_subdomain)
        return record

    async def remove_domain(self, domain_id: str) -> bool:
        """Delete the domain configuration and its cached redirects."""
        record = await self._load(domain_id)
        deleted = await self.store.delete_domain_record(domain_id)
        self.cache.invalidate_domain(record.custom_domain)
        if record.project_subdomain:
            self.cache.invalidate_project(record.project_subdomain)
        self._locks.pop(domain_id, None)
        logger.info("Domain removed", domain=record.custom_domain, domain_id=domain_id)
        return deleted

    async def get_domain_status(self, domain_id: str, log_limit: int = 10) -> DomainStatusReport:
        """Record, effective status, setup instructions and recent attempts."""
        record = await self._load(domain_id)
        status = record.effective_status(self._now())
        instructions = None
        if status != DomainStatus.VERIFIED:
            instructions = self.verifier.dns_instructions(record.custom_domain, record.verification_token)
        logs = await self.store.list_verification_logs(domain_id, limit=log_limit)
        return DomainStatusReport(record=record, status=status, instructions=instructions, logs=logs)
