"""Tests for records and the JSON domain store."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from domainedge.core.exceptions import StoreUnavailableError
from domainedge.domains.records import DNSRecord, DomainRecord, DomainStatus, VerificationLog
from domainedge.domains.storage import MAX_LOGS_PER_DOMAIN, JsonDomainStore

TOKEN = "verify-k2j4h5g6-lz8q1x2c"
NOW = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)


class TestDomainRecord:
    """Tests for DomainRecord."""

    def test_round_trip(self, make_record):
        record = make_record(status=DomainStatus.VERIFIED, last_verified_at=NOW)

        restored = DomainRecord.from_dict(json.loads(json.dumps(record.to_dict())))

        assert restored == record

    def test_from_dict_minimal(self):
        record = DomainRecord.from_dict({"id": 1, "project_id": 2, "custom_domain": "a.com"})

        assert record.id == "1"
        assert record.status == DomainStatus.PENDING
        assert record.verification_token == ""
        assert record.project_published is True
        assert record.redirect_enabled is True

    def test_from_dict_naive_and_zulu_datetimes(self):
        record = DomainRecord.from_dict(
            {
                "id": "d",
                "project_id": "p",
                "custom_domain": "a.com",
                "expires_at": "2024-01-22T10:00:00Z",
                "last_verified_at": "2024-01-15T10:30:00",
            }
        )

        assert record.expires_at == datetime(2024, 1, 22, 10, 0, tzinfo=UTC)
        assert record.last_verified_at == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def test_effective_status(self, make_record):
        record = make_record()

        assert record.effective_status(NOW) == DomainStatus.PENDING
        assert record.effective_status(NOW + timedelta(days=8)) == DomainStatus.EXPIRED

    def test_verified_never_expires(self, make_record):
        record = make_record(status=DomainStatus.VERIFIED)

        assert record.effective_status(NOW + timedelta(days=30)) == DomainStatus.VERIFIED

    def test_no_expiry(self, make_record):
        assert make_record(expires_at=None).is_expired(NOW + timedelta(days=365)) is False

    def test_attempts_exhausted(self, make_record):
        assert make_record(verification_attempts=4).attempts_exhausted is False
        assert make_record(verification_attempts=5).attempts_exhausted is True

    def test_verification_log_round_trip(self):
        log = VerificationLog(
            domain_id="d-1",
            attempt=2,
            result="failed",
            error_message="nope",
            dns_records=[DNSRecord("_einvite-verification.a.com", "TXT", "x", 300)],
            response_time_ms=15,
            checked_at=NOW,
        )

        assert VerificationLog.from_dict(log.to_dict()) == log


class TestJsonDomainStore:
    """Tests for JsonDomainStore."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record())

        record = await store.get_domain_record("d-1")

        assert record is not None
        assert record.custom_domain == "ourwedding.com"
        assert record.updated_at is not None
        assert await store.get_domain_record("missing") is None

    @pytest.mark.asyncio
    async def test_persistence(self, temp_storage, make_record):
        await JsonDomainStore(temp_storage).save_domain_record(make_record())

        record = await JsonDomainStore(temp_storage).get_domain_record("d-1")

        assert record is not None
        assert record.verification_token == TOKEN

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        store = JsonDomainStore(tmp_path / "nothing.json")

        assert await store.get_domain_record("d-1") is None

    @pytest.mark.asyncio
    async def test_corrupt_file(self, temp_storage):
        temp_storage.write_text("{not json", encoding="utf-8")
        store = JsonDomainStore(temp_storage)

        with pytest.raises(StoreUnavailableError):
            await store.get_domain_record("d-1")

    @pytest.mark.asyncio
    async def test_find_by_hostname_requires_verified(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record())

        assert await store.find_domain_record_by_hostname("ourwedding.com") is None

        await store.update_domain_status("d-1", DomainStatus.VERIFIED)
        match = await store.find_domain_record_by_hostname("OurWedding.com")

        assert match is not None
        assert match.project_subdomain == "john-jane-2024"
        assert match.is_published is True

    @pytest.mark.asyncio
    async def test_find_by_hostname_reports_unpublished(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record(status=DomainStatus.VERIFIED, project_published=False))

        match = await store.find_domain_record_by_hostname("ourwedding.com")

        assert match is not None
        assert match.is_published is False

    @pytest.mark.asyncio
    async def test_find_by_custom_domain_and_project(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record())

        assert (await store.find_domain_record_by_custom_domain("ourwedding.com")).id == "d-1"
        assert (await store.find_domain_record_by_project("p-42")).id == "d-1"
        assert await store.find_domain_record_by_project("p-other") is None

    @pytest.mark.asyncio
    async def test_find_redirect_target(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record(status=DomainStatus.VERIFIED))
        await store.save_domain_record(
            make_record(
                id="d-2",
                project_id="p-2",
                custom_domain="quiet.com",
                project_subdomain="quiet",
                status=DomainStatus.VERIFIED,
                redirect_enabled=False,
            )
        )
        await store.save_domain_record(
            make_record(id="d-3", project_id="p-3", custom_domain="pending.com", project_subdomain="pending")
        )

        assert await store.find_redirect_target("john-jane-2024") == "https://ourwedding.com"
        assert await store.find_redirect_target("quiet") is None
        assert await store.find_redirect_target("pending") is None
        assert await store.find_redirect_target("unknown") is None

    @pytest.mark.asyncio
    async def test_list_redirect_entries(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record(status=DomainStatus.VERIFIED))
        await store.save_domain_record(
            make_record(
                id="d-2",
                project_id="p-2",
                custom_domain="quiet.com",
                project_subdomain="quiet",
                status=DomainStatus.VERIFIED,
                redirect_enabled=False,
            )
        )
        await store.save_domain_record(
            make_record(
                id="d-3",
                project_id="p-3",
                custom_domain="draft.com",
                project_subdomain="draft",
                status=DomainStatus.VERIFIED,
                project_published=False,
            )
        )

        seeds = {seed.subdomain: seed for seed in await store.list_redirect_entries()}

        assert set(seeds) == {"john-jane-2024", "quiet"}
        assert seeds["john-jane-2024"].should_redirect is True
        assert seeds["quiet"].should_redirect is False

    @pytest.mark.asyncio
    async def test_update_status_failed_increments_attempts(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record())

        await store.update_domain_status("d-1", DomainStatus.FAILED, "No TXT records found")
        await store.update_domain_status("d-1", DomainStatus.FAILED, "No TXT records found")

        record = await store.get_domain_record("d-1")
        assert record.status == DomainStatus.FAILED
        assert record.verification_attempts == 2
        assert record.error_message == "No TXT records found"

    @pytest.mark.asyncio
    async def test_update_status_verified(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record(error_message="old"))
        records = [DNSRecord("_einvite-verification.ourwedding.com", "TXT", TOKEN, 300)]

        await store.update_domain_status("d-1", DomainStatus.VERIFIED, None, records)

        record = await store.get_domain_record("d-1")
        assert record.status == DomainStatus.VERIFIED
        assert record.last_verified_at is not None
        assert record.error_message is None
        assert record.verification_attempts == 0

        logs = await store.list_verification_logs("d-1")
        assert len(logs) == 1
        assert logs[0].result == "success"
        assert logs[0].dns_records == records

    @pytest.mark.asyncio
    async def test_update_status_unknown_record(self, temp_storage):
        store = JsonDomainStore(temp_storage)

        with pytest.raises(StoreUnavailableError):
            await store.update_domain_status("missing", DomainStatus.FAILED, "x")

    @pytest.mark.asyncio
    async def test_logs_newest_first_and_limited(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record())
        for _ in range(4):
            await store.update_domain_status("d-1", DomainStatus.FAILED, "x")

        logs = await store.list_verification_logs("d-1", limit=2)

        assert [log.attempt for log in logs] == [4, 3]

    @pytest.mark.asyncio
    async def test_logs_are_capped_per_domain(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record(max_verification_attempts=1000))
        for _ in range(MAX_LOGS_PER_DOMAIN + 5):
            await store.update_domain_status("d-1", DomainStatus.FAILED, "x")

        logs = await store.list_verification_logs("d-1", limit=1000)

        assert len(logs) == MAX_LOGS_PER_DOMAIN

    @pytest.mark.asyncio
    async def test_delete(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.save_domain_record(make_record())
        await store.update_domain_status("d-1", DomainStatus.FAILED, "x")

        assert await store.delete_domain_record("d-1") is True
        assert await store.delete_domain_record("d-1") is False
        assert await store.list_verification_logs("d-1") == []

    @pytest.mark.asyncio
    async def test_visits_and_notifications(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        await store.record_visit("d-1", {"hostname": "ourwedding.com", "path": "/"})
        await store.create_notification("u-7", "Custom Domain Verified!", "done", {"type": "domain_verified"})

        data = json.loads(temp_storage.read_text(encoding="utf-8"))
        assert data["visits"][0]["domain_config_id"] == "d-1"
        assert data["visits"][0]["hostname"] == "ourwedding.com"
        assert data["notifications"][0]["user_id"] == "u-7"
        assert data["notifications"][0]["type"] == "domain_verified"

    @pytest.mark.asyncio
    async def test_invalidate_cache_rereads_file(self, temp_storage, make_record):
        store = JsonDomainStore(temp_storage)
        assert await store.get_domain_record("d-1") is None

        await JsonDomainStore(temp_storage).save_domain_record(make_record())
        store.invalidate_cache()

        assert await store.get_domain_record("d-1") is not None
