"""Tests for DNS ownership verification."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import aiodns
import pytest

from domainedge.core.config import DNSConfig
from domainedge.core.exceptions import DNSErrorCategory, DNSLookupError
from domainedge.domains.verification import (
    DNS_SETUP_STEPS,
    DNSVerifier,
    classify_dns_error,
    format_dns_error,
    token_matches,
)

TOKEN = "verify-k2j4h5g6-lz8q1x2c"


def txt(*values):
    return [SimpleNamespace(text=value, ttl=300) for value in values]


def dns_error(code, message):
    return aiodns.error.DNSError(code, message)


@pytest.fixture
def verifier():
    return DNSVerifier(platform_name="einvite", timeout=1.0, max_retries=3, retry_delay=0)


class TestTokenMatches:
    """Tests for the permissive TXT value match."""

    def test_exact(self):
        assert token_matches(TOKEN, TOKEN) is True

    def test_contains(self):
        assert token_matches(f"site-verification={TOKEN}", TOKEN) is True

    def test_quotes_removed(self):
        assert token_matches(f"'{TOKEN}'", TOKEN) is True
        assert token_matches(f'"{TOKEN}"', TOKEN) is True

    def test_mismatch(self):
        assert token_matches("verify-other-123", TOKEN) is False

    def test_empty_token_never_matches(self):
        assert token_matches("", "") is False
        assert token_matches("anything", "") is False


class TestClassifyDNSError:
    """Tests for classify_dns_error."""

    @pytest.mark.parametrize(
        ("code", "category"),
        [
            (1, DNSErrorCategory.NOT_FOUND),
            (4, DNSErrorCategory.NOT_FOUND),
            (3, DNSErrorCategory.SERVER_FAILURE),
            (6, DNSErrorCategory.REFUSED),
            (12, DNSErrorCategory.TIMEOUT),
        ],
    )
    def test_ares_codes(self, code, category):
        assert classify_dns_error(dns_error(code, "some failure")) == category

    @pytest.mark.parametrize(
        ("message", "category"),
        [
            ("queryTxt ENOTFOUND example.com", DNSErrorCategory.NOT_FOUND),
            ("NXDOMAIN", DNSErrorCategory.NOT_FOUND),
            ("lookup timed out", DNSErrorCategory.TIMEOUT),
            ("ETIMEOUT", DNSErrorCategory.TIMEOUT),
            ("SERVFAIL from upstream", DNSErrorCategory.SERVER_FAILURE),
            ("connection refused", DNSErrorCategory.REFUSED),
            ("something odd", DNSErrorCategory.GENERIC),
        ],
    )
    def test_message_text(self, message, category):
        assert classify_dns_error(Exception(message)) == category

    def test_asyncio_timeout(self):
        assert classify_dns_error(asyncio.TimeoutError()) == DNSErrorCategory.TIMEOUT

    def test_lookup_error_keeps_category(self):
        error = DNSLookupError("x", category=DNSErrorCategory.REFUSED)

        assert classify_dns_error(error) == DNSErrorCategory.REFUSED

    def test_permanent_categories(self):
        assert DNSErrorCategory.NOT_FOUND.is_permanent
        assert DNSErrorCategory.REFUSED.is_permanent
        assert not DNSErrorCategory.TIMEOUT.is_permanent
        assert not DNSErrorCategory.SERVER_FAILURE.is_permanent


class TestFormatDNSError:
    """Tests for format_dns_error."""

    def test_none(self):
        assert format_dns_error(None) == "Unknown DNS error occurred"

    def test_not_found(self):
        assert format_dns_error(dns_error(4, "Domain name not found")) == (
            "DNS record not found. Please check your DNS configuration."
        )

    def test_timeout(self):
        assert format_dns_error(asyncio.TimeoutError()) == "DNS lookup timed out. Please try again in a few minutes."

    def test_server_failure(self):
        assert format_dns_error(dns_error(3, "Server failure")) == "DNS server error. Please try again later."

    def test_refused(self):
        assert format_dns_error(dns_error(6, "Query refused")) == (
            "DNS query refused. Please check your domain configuration."
        )

    def test_generic(self):
        assert format_dns_error(Exception("bad label")) == "DNS error: bad label"


class TestDNSVerifier:
    """Tests for DNSVerifier lookups."""

    def test_record_name(self, verifier):
        assert verifier.verification_record_name("https://www.OurWedding.com/") == (
            "_einvite-verification.ourwedding.com"
        )

    def test_from_config(self):
        config = DNSConfig(platform_name="acme", timeout=3.0, max_retries=2, retry_delay=0.5)

        verifier = DNSVerifier.from_config(config)

        assert verifier.platform_name == "acme"
        assert verifier.timeout == 3.0
        assert verifier.max_retries == 2
        assert verifier.retry_delay == 0.5

    def test_dns_instructions(self, verifier):
        instructions = verifier.dns_instructions("ourwedding.com", TOKEN)

        data = instructions.to_dict()
        assert data["recordType"] == "TXT"
        assert data["recordName"] == "_einvite-verification.ourwedding.com"
        assert data["recordValue"] == TOKEN
        assert data["instructions"] == list(DNS_SETUP_STEPS)

    @pytest.mark.asyncio
    async def test_verify_ownership_success(self, verifier):
        with patch.object(verifier, "_query", AsyncMock(return_value=txt("unrelated", TOKEN))) as query:
            result = await verifier.verify_ownership("ourwedding.com", TOKEN)

        query.assert_awaited_once_with("_einvite-verification.ourwedding.com", "TXT")
        assert result.success is True
        assert result.found is True
        assert result.error is None
        assert [r.value for r in result.records] == ["unrelated", TOKEN]
        assert all(r.type == "TXT" and r.ttl == 300 for r in result.records)

    @pytest.mark.asyncio
    async def test_verify_ownership_multi_string_record(self, verifier):
        record = SimpleNamespace(text=[b"verify-k2j4h5g6-", b"lz8q1x2c"], ttl=60)
        with patch.object(verifier, "_query", AsyncMock(return_value=[record])):
            result = await verifier.verify_ownership("ourwedding.com", TOKEN)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_verify_ownership_wrong_token(self, verifier):
        with patch.object(verifier, "_query", AsyncMock(return_value=txt("verify-old-1", "other"))):
            result = await verifier.verify_ownership("ourwedding.com", TOKEN)

        assert result.success is False
        assert result.found is True
        assert result.error == f"Verification token not found. Expected: {TOKEN}, Found: verify-old-1, other"

    @pytest.mark.asyncio
    async def test_verify_ownership_no_records(self, verifier):
        with patch.object(verifier, "_query", AsyncMock(return_value=[])):
            result = await verifier.verify_ownership("ourwedding.com", TOKEN)

        assert result.success is False
        assert result.found is False
        assert result.error == (
            "No TXT records found for _einvite-verification.ourwedding.com. Please check your DNS configuration."
        )

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, verifier):
        query = AsyncMock(side_effect=dns_error(4, "Domain name not found"))
        with patch.object(verifier, "_query", query):
            result = await verifier.verify_ownership("ourwedding.com", TOKEN)

        assert query.await_count == 1
        assert result.success is False
        assert result.found is False
        assert result.error == "DNS record not found. Please check your DNS configuration."

    @pytest.mark.asyncio
    async def test_timeout_is_retried_up_to_max(self, verifier):
        query = AsyncMock(side_effect=asyncio.TimeoutError())
        with patch.object(verifier, "_query", query):
            result = await verifier.verify_ownership("ourwedding.com", TOKEN)

        assert query.await_count == 3
        assert result.success is False
        assert result.error == "DNS lookup timed out. Please try again in a few minutes."

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self, verifier):
        query = AsyncMock(side_effect=[dns_error(3, "Server failure"), txt(TOKEN)])
        with patch.object(verifier, "_query", query):
            result = await verifier.verify_ownership("ourwedding.com", TOKEN)

        assert query.await_count == 2
        assert result.success is True

    @pytest.mark.asyncio
    async def test_retry_backoff_grows(self):
        verifier = DNSVerifier(max_retries=3, retry_delay=0.5)
        query = AsyncMock(side_effect=asyncio.TimeoutError())
        sleep = AsyncMock()
        with patch.object(verifier, "_query", query), patch("asyncio.sleep", sleep):
            await verifier.verify_ownership("ourwedding.com", TOKEN)

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_lookup_txt_raises_after_retries(self, verifier):
        with patch.object(verifier, "_query", AsyncMock(side_effect=dns_error(3, "Server failure"))):
            with pytest.raises(DNSLookupError) as exc_info:
                await verifier.lookup_txt("_einvite-verification.ourwedding.com")

        assert exc_info.value.category == DNSErrorCategory.SERVER_FAILURE
        assert exc_info.value.details["record_type"] == "TXT"

    @pytest.mark.asyncio
    async def test_query_applies_timeout(self):
        verifier = DNSVerifier(timeout=0.01, max_retries=1)

        async def never_answers(hostname, record_type):
            await asyncio.sleep(1)

        resolver = SimpleNamespace(query_dns=never_answers)
        with patch.object(verifier, "_get_resolver", return_value=resolver):
            result = await verifier.verify_ownership("ourwedding.com", TOKEN)

        assert result.success is False
        assert result.error == "DNS lookup timed out. Please try again in a few minutes."

    @pytest.mark.asyncio
    async def test_check_connectivity_a_record(self, verifier):
        answer = [SimpleNamespace(host="203.0.113.7", ttl=120)]
        with patch.object(verifier, "_query", AsyncMock(return_value=answer)) as query:
            result = await verifier.check_connectivity("https://ourwedding.com")

        query.assert_awaited_once_with("ourwedding.com", "A")
        assert result.success is True
        assert result.records[0].type == "A"
        assert result.records[0].value == "203.0.113.7"
        assert result.records[0].ttl == 120

    @pytest.mark.asyncio
    async def test_check_connectivity_falls_back_to_aaaa(self, verifier):
        answer = [SimpleNamespace(host="2001:db8::1", ttl=60)]
        query = AsyncMock(side_effect=[dns_error(1, "No data"), answer])
        with patch.object(verifier, "_query", query):
            result = await verifier.check_connectivity("ourwedding.com")

        assert result.success is True
        assert result.records[0].type == "AAAA"

    @pytest.mark.asyncio
    async def test_check_connectivity_failure(self, verifier):
        query = AsyncMock(side_effect=dns_error(4, "Domain name not found"))
        with patch.object(verifier, "_query", query):
            result = await verifier.check_connectivity("ourwedding.com")

        assert result.success is False
        assert result.error == "Domain does not resolve: DNS record not found. Please check your DNS configuration."

    @pytest.mark.asyncio
    async def test_verify_cname(self, verifier):
        answer = SimpleNamespace(cname="verify.einvite.app.", ttl=300)
        with patch.object(verifier, "_query", AsyncMock(return_value=[answer])):
            result = await verifier.verify_cname("ourwedding.com", "verify.einvite.app")

        assert result.success is True
        assert result.records[0].value == "verify.einvite.app"

    @pytest.mark.asyncio
    async def test_get_dns_records_tolerates_failures(self, verifier):
        async def fake_query(hostname, record_type):
            if record_type == "A":
                return [SimpleNamespace(host="203.0.113.7", ttl=60)]
            if record_type == "TXT":
                return txt("v=spf1 -all")
            raise dns_error(1, "No data")

        with patch.object(verifier, "_query", side_effect=fake_query):
            records = await verifier.get_dns_records("ourwedding.com")

        assert [r.value for r in records.a] == ["203.0.113.7"]
        assert records.aaaa == []
        assert records.cname == []
        assert [r.value for r in records.txt] == ["v=spf1 -all"]

    def test_result_to_dict(self):
        from domainedge.domains.verification import DNSVerificationResult

        data = DNSVerificationResult(success=False, found=False, response_time_ms=12, error="boom").to_dict()

        assert data == {"success": False, "found": False, "records": [], "responseTime": 12, "error": "boom"}
