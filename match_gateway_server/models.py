"""
Pydantic models for admin input validation and output serialization.

Wire names are camelCase (``clientId``, ``rateLimit``, ``allowedIPs``); Python
attributes stay snake_case and line up with the credential store's mutable
field names.

Security features:
- Client ids restricted to a safe character set
- Allowed IPs parsed as real addresses
- Update payloads limited to the closed set of mutable fields
- Key material only ever rendered as a masked preview, except in IssuedKeyData
"""
import ipaddress
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator

from match_gateway_server.credential_store import CredentialRecord
from match_gateway_server.logging_config import mask_api_key

CLIENT_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,99}$"


def _validate_ips(values: List[str]) -> List[str]:
    cleaned = []
    for value in values:
        value = value.strip()
        try:
            ipaddress.ip_address(value)
        except ValueError:
            raise ValueError(f"Invalid IP address: {value!r}")
        if value not in cleaned:
            cleaned.append(value)
    return cleaned


def _validate_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return validate_email(value, check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValueError(f"Invalid contact email: {e}")


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CreateKeyRequest(BaseModel):
    """Request model for POST /api/admin/keys"""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200, description="Client display name")
    client_id: str = Field(..., alias="clientId", pattern=CLIENT_ID_PATTERN, description="Stable tenant identifier")
    rate_limit: Optional[int] = Field(None, alias="rateLimit", ge=1, description="Requests per rolling hour")
    expires_in_days: Optional[int] = Field(None, alias="expiresInDays", ge=1, le=3650)
    allowed_ips: List[str] = Field(default_factory=list, alias="allowedIPs")
    contact_email: Optional[str] = Field(None, alias="contactEmail", max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("allowed_ips")
    @classmethod
    def validate_allowed_ips(cls, v: List[str]) -> List[str]:
        return _validate_ips(v)

    @field_validator("contact_email")
    @classmethod
    def validate_contact_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_email(v)


class UpdateKeyRequest(BaseModel):
    """
    Request model for PUT /api/admin/keys/{client_id}.

    Only the mutable fields are declared; anything else in the payload
    (``key``, ``clientId``, ``usageCount``...) is dropped silently.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    is_active: Optional[bool] = Field(None, alias="isActive")
    rate_limit: Optional[int] = Field(None, alias="rateLimit", ge=1)
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    allowed_ips: Optional[List[str]] = Field(None, alias="allowedIPs")
    contact_email: Optional[str] = Field(None, alias="contactEmail", max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("name", "is_active", "rate_limit", "allowed_ips")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator("allowed_ips")
    @classmethod
    def validate_allowed_ips(cls, v: List[str]) -> List[str]:
        return _validate_ips(v)

    @field_validator("contact_email")
    @classmethod
    def validate_contact_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_email(v)

    @field_validator("expires_at")
    @classmethod
    def normalize_expires_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_naive_utc(v)

    def to_fields(self) -> Dict[str, Any]:
        """Fields present in the payload, keyed by credential store name"""
        return self.model_dump(exclude_unset=True)


class KeySummary(BaseModel):
    """Admin view of a credential record; the key is masked"""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    client_id: str = Field(..., alias="clientId")
    is_active: bool = Field(..., alias="isActive")
    rate_limit: int = Field(..., alias="rateLimit")
    usage_count: int = Field(..., alias="usageCount")
    last_used: Optional[datetime] = Field(None, alias="lastUsed")
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    allowed_ips: List[str] = Field(default_factory=list, alias="allowedIPs")
    contact_email: Optional[str] = Field(None, alias="contactEmail")
    notes: Optional[str] = None
    key_preview: str = Field(..., alias="keyPreview")

    @classmethod
    def from_record(cls, record: CredentialRecord) -> "KeySummary":
        return cls(
            name=record.name,
            client_id=record.client_id,
            is_active=record.is_active,
            rate_limit=record.rate_limit,
            usage_count=record.usage_count,
            last_used=record.last_used,
            created_at=record.created_at,
            expires_at=record.expires_at,
            allowed_ips=record.allowed_ips,
            contact_email=record.contact_email,
            notes=record.notes,
            key_preview=mask_api_key(record.key_preview),
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class IssuedKeyData(BaseModel):
    """Response payload of key creation and regeneration (plaintext shown once)"""
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey")
    client_id: str = Field(..., alias="clientId")
    name: str
    rate_limit: int = Field(..., alias="rateLimit")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    created_at: datetime = Field(..., alias="createdAt")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
