"""
SQLAlchemy database models for persistent storage.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ApiKey(Base):
    """API key credential table, one row per tenant."""
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String(100), unique=True, index=True, nullable=False)
    key_hash = Column(String(64), unique=True, index=True, nullable=False)
    key_preview = Column(String(16), nullable=False)
    name = Column(String(200), nullable=False)
    contact_email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    rate_limit = Column(Integer, default=100, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    allowed_ips = Column(JSON, default=list, nullable=False)

    __table_args__ = (
        Index("idx_api_keys_active_expiry", "is_active", "expires_at"),
    )


ENDPOINT_MAX_LENGTH = 500


class UsageEvent(Base):
    """Admitted request log; rows older than the quota window are swept."""
    __tablename__ = "usage_events"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String(100), index=True, nullable=False)
    endpoint = Column(String(ENDPOINT_MAX_LENGTH), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("idx_usage_events_window", "client_id", "timestamp"),
    )
