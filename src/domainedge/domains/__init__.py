"""Custom domain verification.

Customers attach their own domain (e.g. ourwedding.com) to a project site
and prove control of it with a TXT record:

    _einvite-verification.ourwedding.com  TXT  "verify-k2j4h5g6-lz8q1x2c"

Features:
- Domain input cleanup and validation
- Verification token generation
- DNS TXT verification with timeout, retry and error classification
- Propagation estimate across public resolvers
- JSON file and Supabase record stores

Usage:
    from domainedge.domains import DomainVerificationManager, DNSVerifier, JsonDomainStore

    store = JsonDomainStore("domains.json")
    manager = DomainVerificationManager(store, DNSVerifier(), cache)

    record, _ = await manager.configure_domain("p-42", "ourwedding.com", "john-jane-2024")
    outcome = await manager.verify_domain(record.id)
"""

from domainedge.domains.manager import (
    DomainStatusReport,
    DomainVerificationManager,
    VerificationOutcome,
)
from domainedge.domains.propagation import PropagationChecker, PropagationStatus, estimate_propagation
from domainedge.domains.records import (
    DNSRecord,
    DomainRecord,
    DomainStatus,
    HostnameMatch,
    RedirectSeed,
    VerificationLog,
)
from domainedge.domains.storage import DomainRecordStore, JsonDomainStore
from domainedge.domains.supabase import SupabaseDomainStore
from domainedge.domains.tokens import generate_verification_token, is_valid_verification_token
from domainedge.domains.validation import (
    DomainValidationResult,
    DomainValidator,
    clean_domain,
    suggest_domain_corrections,
    validate_domain,
)
from domainedge.domains.verification import (
    DNSInstructions,
    DNSVerificationResult,
    DNSVerifier,
    classify_dns_error,
    format_dns_error,
    token_matches,
)

__all__ = [
    "DomainVerificationManager",
    "VerificationOutcome",
    "DomainStatusReport",
    "DNSVerifier",
    "DNSVerificationResult",
    "DNSInstructions",
    "classify_dns_error",
    "format_dns_error",
    "token_matches",
    "PropagationChecker",
    "PropagationStatus",
    "estimate_propagation",
    "DomainRecord",
    "DomainStatus",
    "DNSRecord",
    "HostnameMatch",
    "RedirectSeed",
    "VerificationLog",
    "DomainRecordStore",
    "JsonDomainStore",
    "SupabaseDomainStore",
    "generate_verification_token",
    "is_valid_verification_token",
    "DomainValidator",
    "DomainValidationResult",
    "clean_domain",
    "validate_domain",
    "suggest_domain_corrections",
]
