"""Error taxonomy for custom domain verification and routing.

Every error carries a stable ``code`` and the HTTP status the verification
API answers with. DNS failures are classified into a small set of
categories so the UI can show an actionable message instead of a raw
resolver error string.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class DNSErrorCategory(Enum):
    """User-facing classification of resolver failures."""

    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    SERVER_FAILURE = "server_failure"
    REFUSED = "refused"
    GENERIC = "generic"

    @property
    def is_permanent(self) -> bool:
        """Permanent failures are reported without retrying."""
        return self in (DNSErrorCategory.NOT_FOUND, DNSErrorCategory.REFUSED)


class DomainEdgeError(Exception):
    """Base class for all domainedge errors."""

    code = "DOMAIN_ERROR"
    status = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            data["details"] = self.details
        return data


class DomainValidationError(DomainEdgeError):
    """Bad domain format or missing required fields."""

    code = "DOMAIN_VALIDATION_ERROR"
    status = 400


class DomainNotFoundError(DomainEdgeError):
    """The requested domain configuration does not exist."""

    code = "DOMAIN_NOT_FOUND"
    status = 404


class DomainConflictError(DomainEdgeError):
    """The custom domain is already attached to another project."""

    code = "DOMAIN_CONFLICT"
    status = 409


class VerificationExpiredError(DomainEdgeError):
    """The verification window has passed; the domain must be reconfigured."""

    code = "VERIFICATION_EXPIRED"
    status = 410


class VerificationRateLimitedError(DomainEdgeError):
    """Verification attempts are exhausted for this domain."""

    code = "VERIFICATION_RATE_LIMITED"
    status = 429


class StoreUnavailableError(DomainEdgeError):
    """The external project/domain store could not be reached or failed."""

    code = "STORE_UNAVAILABLE"
    status = 503


class DNSLookupError(DomainEdgeError):
    """A DNS lookup failed after all retries.

    Raised inside the verifier only; public verifier methods convert it
    into an unsuccessful ``DNSVerificationResult``.
    """

    code = "DNS_VERIFICATION_ERROR"
    status = 502

    def __init__(
        self,
        message: str,
        category: DNSErrorCategory = DNSErrorCategory.GENERIC,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.category = category


def format_error_for_user(error: BaseException) -> str:
    """Return a message that is safe to show to an end user."""
    if isinstance(error, DomainEdgeError):
        return error.message
    return "Internal server error"
