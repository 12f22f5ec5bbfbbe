"""Custom domain input validation.

Customers type domains in every shape imaginable (``https://www.Our-Wedding.com/``,
``ourwedding.com:443``). ``clean_domain`` reduces them to a bare lowercase
hostname and ``DomainValidator`` decides whether that hostname can be attached
to a site. The first failing rule is reported so the UI can explain exactly
what to fix.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_SCHEME_RE = re.compile(r"^https?://")
_WWW_RE = re.compile(r"^www\.")
_PORT_RE = re.compile(r":\d+$")
_IP_RE = re.compile(r"^\d+\.\d+\.\d+\.\d+")
_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,61}[a-z0-9]\.([a-z0-9-]{2,}\.)*[a-z]{2,}$")
_INVALID_CHARS_RE = re.compile(r"[^a-z0-9.-]")


def clean_domain(domain: str) -> str:
    """Normalize user input to a bare hostname.

    Lowercases, trims, and strips a leading ``http(s)://``, a leading ``www.``,
    a trailing slash and a trailing ``:port``. Applying it twice gives the
    same result as applying it once.
    """
    if not domain:
        return ""
    value = domain.lower().strip()
    while True:
        # "http://www.www.example.com/" style input needs more than one pass
        stripped = _PORT_RE.sub("", _WWW_RE.sub("", _SCHEME_RE.sub("", value)).rstrip("/"))
        if stripped == value:
            return value
        value = stripped


@dataclass
class DomainValidationRules:
    """Limits applied by DomainValidator."""

    min_length: int = 4
    max_length: int = 253
    reserved_labels: tuple[str, ...] = ("admin", "api", "www", "mail", "ftp")


@dataclass
class DomainValidationResult:
    """Outcome of validating one domain."""

    is_valid: bool
    domain: str = ""
    error: str | None = None


@dataclass
class DomainParts:
    subdomain: str
    domain: str
    tld: str


class DomainValidator:
    """Validates custom domains before a verification token is issued."""

    def __init__(self, rules: DomainValidationRules | None = None) -> None:
        self.rules = rules or DomainValidationRules()

    def validate(self, domain: str) -> DomainValidationResult:
        """Run every rule in order and report the first failure."""
        cleaned = clean_domain(domain)
        checks = (
            self._check_required,
            self._check_length,
            self._check_format,
            self._check_tld,
            self._check_reserved,
            self._check_special_cases,
        )
        for check in checks:
            error = check(cleaned)
            if error:
                return DomainValidationResult(is_valid=False, domain=cleaned, error=error)
        return DomainValidationResult(is_valid=True, domain=cleaned)

    def _check_required(self, domain: str) -> str | None:
        if not domain:
            return "Domain is required"
        return None

    def _check_length(self, domain: str) -> str | None:
        if len(domain) < self.rules.min_length:
            return f"Domain must be at least {self.rules.min_length} characters long"
        if len(domain) > self.rules.max_length:
            return f"Domain must be no more than {self.rules.max_length} characters long"
        return None

    def _check_format(self, domain: str) -> str | None:
        if "*" in domain:
            return "Wildcard domains are not supported"
        if _INVALID_CHARS_RE.search(domain):
            return "Domain can only contain letters, numbers, dots, and hyphens"
        if ".." in domain:
            return "Domain cannot contain consecutive dots"
        if domain.startswith("-") or domain.endswith("-"):
            return "Domain cannot start or end with hyphens"
        if "--" in domain:
            return "Domain cannot contain consecutive hyphens"
        if _IP_RE.match(domain):
            return "IP addresses are not allowed as custom domains"
        if not _DOMAIN_RE.match(domain):
            return "Invalid domain format. Please enter a valid domain like example.com"
        return None

    def _check_tld(self, domain: str) -> str | None:
        parts = domain.split(".")
        if len(parts) < 2:
            return "Domain must include a valid top-level domain (like .com, .org)"
        if len(parts[-1]) < 2:
            return "Top-level domain must be at least 2 characters long"
        return None

    def _check_reserved(self, domain: str) -> str | None:
        label = domain.split(".")[0]
        if label in self.rules.reserved_labels:
            return f'"{label}" is a reserved domain name and cannot be used'
        return None

    def _check_special_cases(self, domain: str) -> str | None:
        if any(len(label) > 63 for label in domain.split(".")):
            return "Domain labels cannot be longer than 63 characters"
        if "localhost" in domain or "127.0.0.1" in domain:
            return "Localhost domains are not allowed"
        return None

    def get_domain_parts(self, domain: str) -> DomainParts | None:
        """Split a domain into subdomain, registrable name and TLD."""
        parts = clean_domain(domain).split(".")
        if len(parts) < 2:
            return None
        return DomainParts(
            subdomain=".".join(parts[:-2]),
            domain=parts[-2],
            tld=parts[-1],
        )


def validate_domain(domain: str, rules: DomainValidationRules | None = None) -> DomainValidationResult:
    """Validate a domain with the default (or given) rules."""
    return DomainValidator(rules).validate(domain)


_CORRECTIONS: tuple[tuple[re.Pattern[str], str, str], ...] = (
    (re.compile(r"^http://"), "", "Remove http://"),
    (re.compile(r"^https://"), "", "Remove https://"),
    (re.compile(r"^www\."), "", "Remove www."),
    (re.compile(r"/$"), "", "Remove trailing slash"),
    (re.compile(r":\d+$"), "", "Remove port number"),
    (re.compile(r"\.com\.com$"), ".com", "Remove duplicate .com"),
    (re.compile(r"\s+"), "", "Remove spaces"),
)


def suggest_domain_corrections(domain: str) -> list[str]:
    """Suggest fixes for common input mistakes (at most three)."""
    suggestions: list[str] = []
    corrected = domain.lower().strip()

    for pattern, replacement, reason in _CORRECTIONS:
        if pattern.search(corrected):
            corrected = pattern.sub(replacement, corrected)
            suggestions.append(f"{reason}: {corrected}")

    if corrected and "." not in corrected:
        suggestions.extend(
            [
                f"Add .com: {corrected}.com",
                f"Add .in: {corrected}.in",
                f"Add .org: {corrected}.org",
            ]
        )

    return suggestions[:3]
