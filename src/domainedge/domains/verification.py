"""DNS verification for custom domain ownership.

Ownership is proven by a TXT record holding the verification token:

    _einvite-verification.ourwedding.com  TXT  "verify-k2j4h5g6-lz8q1x2c"

Lookups go through aiodns with a per-attempt timeout and a linear backoff
between attempts. Public methods never raise: resolver failures come back as
an unsuccessful DNSVerificationResult with a message the customer can act on.
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from typing import Any

import aiodns
import structlog

from domainedge.core.exceptions import DNSErrorCategory, DNSLookupError
from domainedge.domains.records import DNSRecord
from domainedge.domains.validation import clean_domain
from domainedge.observability.metrics import DNS_LOOKUP_DURATION, DNS_LOOKUPS

logger = structlog.get_logger()

# c-ares status codes carried as the first argument of aiodns.error.DNSError
_ARES_ENODATA = 1
_ARES_ESERVFAIL = 3
_ARES_ENOTFOUND = 4
_ARES_EREFUSED = 6
_ARES_ETIMEOUT = 12

_CODE_CATEGORIES = {
    _ARES_ENODATA: DNSErrorCategory.NOT_FOUND,
    _ARES_ENOTFOUND: DNSErrorCategory.NOT_FOUND,
    _ARES_ESERVFAIL: DNSErrorCategory.SERVER_FAILURE,
    _ARES_EREFUSED: DNSErrorCategory.REFUSED,
    _ARES_ETIMEOUT: DNSErrorCategory.TIMEOUT,
}

_CATEGORY_MESSAGES = {
    DNSErrorCategory.NOT_FOUND: "DNS record not found. Please check your DNS configuration.",
    DNSErrorCategory.TIMEOUT: "DNS lookup timed out. Please try again in a few minutes.",
    DNSErrorCategory.SERVER_FAILURE: "DNS server error. Please try again later.",
    DNSErrorCategory.REFUSED: "DNS query refused. Please check your domain configuration.",
}

DNS_SETUP_STEPS = (
    "Login to your domain provider (GoDaddy, Namecheap, etc.)",
    "Go to DNS Management or DNS Records section",
    "Add a new TXT record with the details above",
    "Set TTL to 300 seconds (5 minutes) if asked",
    "Save the record and wait 5-30 minutes for propagation",
    'Click "Verify Domain" to check the record',
)


def _error_message(error: BaseException) -> str:
    if isinstance(error, aiodns.error.DNSError) and len(error.args) > 1:
        return str(error.args[1])
    return str(error)


def classify_dns_error(error: BaseException) -> DNSErrorCategory:
    """Map a resolver failure to a user-facing category.

    c-ares status codes are checked first, the message text second.
    """
    if isinstance(error, DNSLookupError):
        return error.category
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return DNSErrorCategory.TIMEOUT
    if isinstance(error, aiodns.error.DNSError) and error.args:
        category = _CODE_CATEGORIES.get(error.args[0])
        if category is not None:
            return category

    message = _error_message(error).lower()
    if "notfound" in message or "nxdomain" in message or "not found" in message:
        return DNSErrorCategory.NOT_FOUND
    if "timeout" in message or "timed out" in message:
        return DNSErrorCategory.TIMEOUT
    if "servfail" in message:
        return DNSErrorCategory.SERVER_FAILURE
    if "refused" in message:
        return DNSErrorCategory.REFUSED
    return DNSErrorCategory.GENERIC


def format_dns_error(error: BaseException | None) -> str:
    """Turn a resolver failure into a message safe to show a customer."""
    if error is None:
        return "Unknown DNS error occurred"
    if isinstance(error, DNSLookupError):
        return error.message
    category = classify_dns_error(error)
    if category in _CATEGORY_MESSAGES:
        return _CATEGORY_MESSAGES[category]
    message = _error_message(error)
    return f"DNS error: {message}" if message else "Unknown DNS error occurred"


def token_matches(value: str, token: str) -> bool:
    """Check one TXT value against the expected token.

    Accepts an exact match, a value containing the token (providers that
    keep surrounding quotes or prefixes), or a match once quote characters
    are removed.
    """
    if not token:
        return False
    if value == token:
        return True
    if token in value:
        return True
    return value.replace('"', "").replace("'", "") == token


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _answers(result: Any) -> list[Any]:
    """Normalize resolver output to a list of answer records."""
    if result is None:
        return []
    answer = getattr(result, "answer", None)
    if answer is not None:
        return list(answer)
    if isinstance(result, (list, tuple)):
        return list(result)
    return [result]


def _txt_value(record: Any) -> str:
    """Extract the full text of a TXT answer, joining multi-string records."""
    text = getattr(record, "text", None)
    if text is None:
        data = getattr(record, "data", record)
        text = getattr(data, "data", data)
    if isinstance(text, (list, tuple)):
        return "".join(_decode(part) for part in text)
    return _decode(text)


def _address_value(record: Any) -> str:
    host = getattr(record, "host", None)
    if host is None:
        data = getattr(record, "data", record)
        host = getattr(data, "addr", data)
    return _decode(host)


def _cname_value(record: Any) -> str:
    cname = getattr(record, "cname", None)
    if cname is None:
        data = getattr(record, "data", record)
        cname = getattr(data, "cname", data)
    return _decode(cname).rstrip(".")


def _record_ttl(record: Any) -> int | None:
    ttl = getattr(record, "ttl", None)
    return ttl if isinstance(ttl, int) and ttl >= 0 else None


@dataclass
class DNSVerificationResult:
    """Outcome of one verification or connectivity check."""

    success: bool
    found: bool
    records: list[DNSRecord] = field(default_factory=list)
    response_time_ms: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "found": self.found,
            "records": [record.to_dict() for record in self.records],
            "responseTime": self.response_time_ms,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class DNSInstructions:
    """What the customer has to publish to prove ownership."""

    record_type: str
    record_name: str
    record_value: str
    instructions: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "recordType": self.record_type,
            "recordName": self.record_name,
            "recordValue": self.record_value,
            "instructions": list(self.instructions),
        }


@dataclass
class DNSRecordSet:
    """All records found for a domain, grouped by type."""

    a: list[DNSRecord] = field(default_factory=list)
    aaaa: list[DNSRecord] = field(default_factory=list)
    cname: list[DNSRecord] = field(default_factory=list)
    txt: list[DNSRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "a": [r.to_dict() for r in self.a],
            "aaaa": [r.to_dict() for r in self.aaaa],
            "cname": [r.to_dict() for r in self.cname],
            "txt": [r.to_dict() for r in self.txt],
        }


class DNSVerifier:
    """Verifies domain ownership through the verification TXT record.

    Each lookup attempt is bounded by ``timeout`` seconds. Transient
    failures are retried up to ``max_retries`` attempts in total, waiting
    ``retry_delay * attempt`` seconds after attempt N. Not-found and
    refused answers are not retried.
    """

    def __init__(
        self,
        platform_name: str = "einvite",
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        nameservers: list[str] | None = None,
    ) -> None:
        """Initialize DNS verifier.

        Args:
            platform_name: Label used in ``_<platform>-verification.<domain>``.
            timeout: Seconds allowed for a single lookup attempt.
            max_retries: Total attempts per lookup (at least 1).
            retry_delay: Base delay in seconds between attempts.
            nameservers: Resolver addresses; None uses the system resolver.
        """
        self.platform_name = platform_name
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.nameservers = list(nameservers) if nameservers else None
        self._resolver: aiodns.DNSResolver | None = None

    @classmethod
    def from_config(cls, config: Any, nameservers: list[str] | None = None) -> DNSVerifier:
        """Build a verifier from a DNSConfig."""
        return cls(
            platform_name=config.platform_name,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            nameservers=nameservers if nameservers is not None else (config.nameservers or None),
        )

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create DNS resolver with proper event loop handling."""
        if self._resolver is None:
            kwargs: dict[str, Any] = {}
            if self.nameservers:
                kwargs["nameservers"] = self.nameservers
            if sys.platform == "win32":
                try:
                    kwargs["loop"] = asyncio.get_running_loop()
                except RuntimeError:
                    kwargs["loop"] = asyncio.new_event_loop()
            self._resolver = aiodns.DNSResolver(**kwargs)
        return self._resolver

    def verification_record_name(self, domain: str) -> str:
        """Name of the TXT record that must hold the token."""
        return f"_{self.platform_name}-verification.{clean_domain(domain)}"

    def dns_instructions(self, domain: str, token: str) -> DNSInstructions:
        """Setup steps shown to the customer while a domain is unverified."""
        return DNSInstructions(
            record_type="TXT",
            record_name=self.verification_record_name(domain),
            record_value=token,
            instructions=list(DNS_SETUP_STEPS),
        )

    async def _query(self, hostname: str, record_type: str) -> Any:
        resolver = self._get_resolver()
        with DNS_LOOKUP_DURATION.time():
            try:
                result = await asyncio.wait_for(
                    resolver.query_dns(hostname, record_type),
                    timeout=self.timeout,
                )
            except Exception:
                DNS_LOOKUPS.labels(record_type=record_type, outcome="error").inc()
                raise
        DNS_LOOKUPS.labels(record_type=record_type, outcome="ok").inc()
        return result

    async def _query_with_retry(self, hostname: str, record_type: str) -> Any:
        """Run one lookup, retrying transient failures.

        Raises:
            DNSLookupError: After the final attempt fails, or immediately on
                a permanent failure.
        """
        last_error: BaseException | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._query(hostname, record_type)
            except (aiodns.error.DNSError, asyncio.TimeoutError, TimeoutError) as e:
                last_error = e
                category = classify_dns_error(e)
                logger.debug(
                    "DNS lookup attempt failed",
                    hostname=hostname,
                    record_type=record_type,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    category=category.value,
                )
                if category.is_permanent or attempt == self.max_retries:
                    break
                await asyncio.sleep(self.retry_delay * attempt)

        category = classify_dns_error(last_error) if last_error else DNSErrorCategory.GENERIC
        raise DNSLookupError(
            format_dns_error(last_error),
            category=category,
            details={"hostname": hostname, "record_type": record_type},
        )

    async def lookup_txt(self, hostname: str) -> list[str]:
        """Return all TXT values at ``hostname`` (multi-string records joined)."""
        result = await self._query_with_retry(hostname, "TXT")
        return [_txt_value(record) for record in _answers(result)]

    async def verify_ownership(self, domain: str, expected_token: str) -> DNSVerificationResult:
        """Check that the verification TXT record carries ``expected_token``.

        Args:
            domain: The custom domain, in any user-typed form.
            expected_token: The token issued for this domain.

        Returns:
            DNSVerificationResult; ``success`` when any TXT value matches.
        """
        start = time.monotonic()
        record_name = self.verification_record_name(domain)
        logger.info("Verifying domain ownership", domain=clean_domain(domain), record=record_name)

        try:
            values = await self.lookup_txt(record_name)
        except DNSLookupError as e:
            logger.info("Domain ownership lookup failed", record=record_name, error=e.message)
            return DNSVerificationResult(
                success=False,
                found=False,
                response_time_ms=self._elapsed_ms(start),
                error=e.message,
            )

        matched = any(token_matches(value, expected_token) for value in values)
        result = DNSVerificationResult(
            success=matched,
            found=len(values) > 0,
            records=[DNSRecord(name=record_name, type="TXT", value=value, ttl=300) for value in values],
            response_time_ms=self._elapsed_ms(start),
        )
        if not result.found:
            result.error = f"No TXT records found for {record_name}. Please check your DNS configuration."
        elif not matched:
            result.error = (
                f"Verification token not found. Expected: {expected_token}, Found: {', '.join(values)}"
            )

        logger.info(
            "Domain ownership checked",
            record=record_name,
            success=result.success,
            records_found=len(values),
            response_time_ms=result.response_time_ms,
        )
        return result

    async def verify_cname(self, domain: str, expected_target: str) -> DNSVerificationResult:
        """Alternative check: the verification name is a CNAME to ``expected_target``."""
        start = time.monotonic()
        record_name = self.verification_record_name(domain)
        try:
            result = await self._query_with_retry(record_name, "CNAME")
        except DNSLookupError as e:
            return DNSVerificationResult(
                success=False,
                found=False,
                response_time_ms=self._elapsed_ms(start),
                error=e.message,
            )

        targets = [_cname_value(record) for record in _answers(result)]
        expected = expected_target.rstrip(".")
        found = expected in targets
        return DNSVerificationResult(
            success=found,
            found=len(targets) > 0,
            records=[DNSRecord(name=record_name, type="CNAME", value=t) for t in targets],
            response_time_ms=self._elapsed_ms(start),
            error=None if found else f"Expected CNAME target: {expected}, Found: {', '.join(targets)}",
        )

    async def check_connectivity(self, domain: str) -> DNSVerificationResult:
        """Check that the domain resolves at all (A, then AAAA)."""
        start = time.monotonic()
        hostname = clean_domain(domain)
        try:
            result = await self._query(hostname, "A")
            record_type = "A"
        except (aiodns.error.DNSError, asyncio.TimeoutError, TimeoutError) as first_error:
            try:
                result = await self._query(hostname, "AAAA")
                record_type = "AAAA"
            except (aiodns.error.DNSError, asyncio.TimeoutError, TimeoutError):
                return DNSVerificationResult(
                    success=False,
                    found=False,
                    response_time_ms=self._elapsed_ms(start),
                    error=f"Domain does not resolve: {format_dns_error(first_error)}",
                )

        return DNSVerificationResult(
            success=True,
            found=True,
            records=[
                DNSRecord(name=hostname, type=record_type, value=_address_value(r), ttl=_record_ttl(r))
                for r in _answers(result)
            ],
            response_time_ms=self._elapsed_ms(start),
        )

    async def get_dns_records(self, domain: str) -> DNSRecordSet:
        """Collect A, AAAA, CNAME and TXT records for debugging.

        Each lookup fails independently to an empty list.
        """
        hostname = clean_domain(domain)
        lookups = (
            ("A", _address_value),
            ("AAAA", _address_value),
            ("CNAME", _cname_value),
            ("TXT", _txt_value),
        )
        results = await asyncio.gather(
            *(self._query(hostname, record_type) for record_type, _ in lookups),
            return_exceptions=True,
        )

        record_set = DNSRecordSet()
        for (record_type, extract), result in zip(lookups, results, strict=True):
            if isinstance(result, BaseException):
                logger.debug("DNS record lookup failed", hostname=hostname, record_type=record_type)
                continue
            records = [
                DNSRecord(name=hostname, type=record_type, value=extract(r), ttl=_record_ttl(r))
                for r in _answers(result)
            ]
            setattr(record_set, record_type.lower(), records)
        return record_set

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
