"""
Unit tests for Pydantic validation models.

Tests cover:
- Client id and IP allow-list validation
- Update payloads limited to mutable fields
- Masked output serialization
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from match_gateway_server.credential_store import CredentialRecord
from match_gateway_server.models import CreateKeyRequest, IssuedKeyData, KeySummary, UpdateKeyRequest


class TestCreateKeyRequest:
    """Test suite for CreateKeyRequest validation model."""

    def test_valid_request_minimal(self):
        request = CreateKeyRequest(name="Acme", clientId="acme_1")

        assert request.client_id == "acme_1"
        assert request.rate_limit is None
        assert request.expires_in_days is None
        assert request.allowed_ips == []

    def test_valid_request_all_fields(self):
        request = CreateKeyRequest(
            name="  Acme  ",
            clientId="acme-1.eu",
            rateLimit=500,
            expiresInDays=365,
            allowedIPs=["1.2.3.4", "2001:db8::1"],
            contactEmail="ops@acme.com",
            notes="pilot",
        )

        assert request.name == "Acme"
        assert request.allowed_ips == ["1.2.3.4", "2001:db8::1"]
        assert request.contact_email == "ops@acme.com"

    def test_snake_case_names_accepted(self):
        request = CreateKeyRequest(name="Acme", client_id="acme_1", rate_limit=5)
        assert request.rate_limit == 5

    @pytest.mark.parametrize("client_id", ["", "has space", "_leading", "a/b", "x" * 101])
    def test_invalid_client_id(self, client_id):
        with pytest.raises(ValidationError):
            CreateKeyRequest(name="Acme", clientId=client_id)

    def test_blank_name(self):
        with pytest.raises(ValidationError):
            CreateKeyRequest(name="   ", clientId="acme_1")

    @pytest.mark.parametrize("field,value", [("rateLimit", 0), ("expiresInDays", 0), ("expiresInDays", 3651)])
    def test_numeric_bounds(self, field, value):
        with pytest.raises(ValidationError):
            CreateKeyRequest(name="Acme", clientId="acme_1", **{field: value})

    def test_invalid_ip(self):
        with pytest.raises(ValidationError) as exc_info:
            CreateKeyRequest(name="Acme", clientId="acme_1", allowedIPs=["1.2.3.4", "300.1.1.1"])
        assert "300.1.1.1" in str(exc_info.value)

    def test_duplicate_ips_collapsed(self):
        request = CreateKeyRequest(name="Acme", clientId="acme_1", allowedIPs=["1.2.3.4", " 1.2.3.4"])
        assert request.allowed_ips == ["1.2.3.4"]

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            CreateKeyRequest(name="Acme", clientId="acme_1", contactEmail="not-an-email")

    def test_empty_email_becomes_none(self):
        request = CreateKeyRequest(name="Acme", clientId="acme_1", contactEmail="  ")
        assert request.contact_email is None


class TestUpdateKeyRequest:
    """Test suite for UpdateKeyRequest validation model."""

    def test_only_set_fields_returned(self):
        request = UpdateKeyRequest(rateLimit=10)
        assert request.to_fields() == {"rate_limit": 10}

    def test_unknown_fields_dropped(self):
        request = UpdateKeyRequest(**{"key": "sk_x", "clientId": "other", "usageCount": 1, "notes": "n"})
        assert request.to_fields() == {"notes": "n"}

    def test_nullable_fields(self):
        request = UpdateKeyRequest(expiresAt=None, contactEmail=None, notes=None)
        assert request.to_fields() == {"expires_at": None, "contact_email": None, "notes": None}

    @pytest.mark.parametrize("field", ["name", "isActive", "rateLimit", "allowedIPs"])
    def test_required_fields_not_nullable(self, field):
        with pytest.raises(ValidationError):
            UpdateKeyRequest(**{field: None})

    def test_expires_at_normalized_to_naive_utc(self):
        aware = datetime(2026, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        request = UpdateKeyRequest(expiresAt=aware)
        assert request.expires_at == datetime(2026, 5, 1, 12, 0)

    def test_empty_allow_list_clears_restriction(self):
        assert UpdateKeyRequest(allowedIPs=[]).to_fields() == {"allowed_ips": []}


class TestOutputModels:
    """Test suite for response serialization"""

    @pytest.fixture
    def record(self):
        return CredentialRecord(
            client_id="acme_1",
            name="Acme",
            key_preview="deadbeef",
            is_active=True,
            rate_limit=100,
            usage_count=3,
            created_at=datetime(2026, 3, 1, 12, 0),
            last_used=datetime(2026, 3, 2, 9, 30),
            expires_at=None,
            allowed_ips=["1.2.3.4"],
        )

    def test_key_summary_masks_preview(self, record):
        data = KeySummary.from_record(record).to_dict()

        assert data["keyPreview"].endswith("deadbeef")
        assert data["keyPreview"] != "deadbeef"
        assert data["clientId"] == "acme_1"
        assert data["usageCount"] == 3
        assert data["lastUsed"] == "2026-03-02T09:30:00"
        assert data["expiresAt"] is None
        assert "key_hash" not in data and "keyHash" not in data

    def test_issued_key_data(self):
        data = IssuedKeyData(
            api_key="sk_" + "a" * 64,
            client_id="acme_1",
            name="Acme",
            rate_limit=100,
            created_at=datetime(2026, 3, 1, 12, 0),
        ).to_dict()

        assert data == {
            "apiKey": "sk_" + "a" * 64,
            "clientId": "acme_1",
            "name": "Acme",
            "rateLimit": 100,
            "expiresAt": None,
            "createdAt": "2026-03-01T12:00:00",
        }
