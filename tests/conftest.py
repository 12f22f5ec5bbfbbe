"""Shared fixtures for domainedge tests."""

from __future__ import annotations

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from domainedge.domains.records import DomainRecord, DomainStatus

TOKEN = "verify-k2j4h5g6-lz8q1x2c"
NOW = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def temp_storage():
    """Create a temporary storage file."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
        f.write("{}")
        path = Path(f.name)
    yield path
    path.unlink(missing_ok=True)


@pytest.fixture
def make_record():
    """Factory for domain records with sensible defaults."""

    def factory(**overrides) -> DomainRecord:
        values = {
            "id": "d-1",
            "project_id": "p-42",
            "custom_domain": "ourwedding.com",
            "verification_token": TOKEN,
            "status": DomainStatus.PENDING,
            "expires_at": NOW + timedelta(days=7),
            "project_subdomain": "john-jane-2024",
            "owner_id": "u-7",
            "created_at": NOW,
        }
        values.update(overrides)
        return DomainRecord(**values)

    return factory
