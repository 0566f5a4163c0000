"""
Credential store: durable API key records and their policy attributes.

Pure data access. Keys are persisted as a salted SHA-256 digest plus a short
preview of the tail; the plaintext leaves this module exactly once, as the
return value of ``create`` or ``rotate``.
"""
import hashlib
import secrets
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from match_gateway_server.config import settings
from match_gateway_server.db_models import ApiKey, utcnow
from match_gateway_server.errors import ClientNotFound, CredentialStoreUnavailable, DuplicateClient
from match_gateway_server.logging_config import KEY_PREVIEW_LENGTH

KEY_ENTROPY_BYTES = 32  # 256 bits


class MutableField(str, Enum):
    """Closed set of record attributes an administrator may change"""
    NAME = "name"
    IS_ACTIVE = "is_active"
    RATE_LIMIT = "rate_limit"
    EXPIRES_AT = "expires_at"
    ALLOWED_IPS = "allowed_ips"
    CONTACT_EMAIL = "contact_email"
    NOTES = "notes"


MUTABLE_FIELDS = frozenset(f.value for f in MutableField)


@dataclass
class CredentialRecord:
    """Detached snapshot of an ``api_keys`` row (never holds the key itself)"""
    client_id: str
    name: str
    key_preview: str
    is_active: bool
    rate_limit: int
    usage_count: int
    created_at: datetime
    last_used: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    allowed_ips: List[str] = field(default_factory=list)
    contact_email: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_row(cls, row: ApiKey) -> "CredentialRecord":
        return cls(
            client_id=row.client_id,
            name=row.name,
            key_preview=row.key_preview,
            is_active=row.is_active,
            rate_limit=row.rate_limit,
            usage_count=row.usage_count,
            created_at=row.created_at,
            last_used=row.last_used_at,
            expires_at=row.expires_at,
            allowed_ips=list(row.allowed_ips or []),
            contact_email=row.contact_email,
            notes=row.notes,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at


class CredentialStore:
    """Data access over the ``api_keys`` table"""

    def __init__(
        self,
        session_factory: sessionmaker,
        salt: Optional[str] = None,
        key_prefix: Optional[str] = None,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory
            salt: Secret salt for key hashing (defaults to API_KEY_SALT)
            key_prefix: Class prefix of generated keys (defaults to API_KEY_PREFIX)
        """
        self._session_factory = session_factory
        self.salt = salt or settings.api_key_salt
        self.key_prefix = key_prefix or settings.api_key_prefix

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            raise CredentialStoreUnavailable() from e
        finally:
            session.close()

    def generate_key(self) -> str:
        """Fresh ``<prefix>_<64 hex chars>`` secret from the OS CSPRNG"""
        return f"{self.key_prefix}_{secrets.token_hex(KEY_ENTROPY_BYTES)}"

    def hash_key(self, raw_key: str) -> str:
        """Hash API key with salt"""
        salted = f"{raw_key}{self.salt}".encode()
        return hashlib.sha256(salted).hexdigest()

    def _get_row(self, session: Session, client_id: str) -> Optional[ApiKey]:
        return session.execute(
            select(ApiKey).where(ApiKey.client_id == client_id)
        ).scalar_one_or_none()

    def lookup(self, raw_key: str) -> Optional[CredentialRecord]:
        """
        Resolve a presented secret to its record.

        Returns None for unknown and malformed keys alike.

        Raises:
            CredentialStoreUnavailable: If the database cannot be queried
        """
        key_hash = self.hash_key(raw_key)
        with self._session() as session:
            row = session.execute(
                select(ApiKey).where(ApiKey.key_hash == key_hash)
            ).scalar_one_or_none()
            return CredentialRecord.from_row(row) if row else None

    def get(self, client_id: str) -> Optional[CredentialRecord]:
        with self._session() as session:
            row = self._get_row(session, client_id)
            return CredentialRecord.from_row(row) if row else None

    def list_records(self, active: Optional[bool] = None, search: Optional[str] = None) -> List[CredentialRecord]:
        """
        List records, newest first.

        Args:
            active: Only active (True) or inactive (False) records
            search: Case-insensitive substring of name or client id
        """
        query = select(ApiKey).order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
        if active is not None:
            query = query.where(ApiKey.is_active.is_(active))
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(ApiKey.name.ilike(pattern), ApiKey.client_id.ilike(pattern)))

        with self._session() as session:
            return [CredentialRecord.from_row(row) for row in session.execute(query).scalars()]

    def create(
        self,
        client_id: str,
        name: str,
        rate_limit: int,
        expires_at: Optional[datetime] = None,
        allowed_ips: Optional[List[str]] = None,
        contact_email: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[str, CredentialRecord]:
        """
        Persist a new record with a freshly generated key.

        Returns:
            Tuple of (raw_key, record)

        Raises:
            DuplicateClient: If client_id is already taken
        """
        with self._session() as session:
            if self._get_row(session, client_id) is not None:
                raise DuplicateClient()

            raw_key = self.generate_key()
            row = ApiKey(
                client_id=client_id,
                key_hash=self.hash_key(raw_key),
                key_preview=raw_key[-KEY_PREVIEW_LENGTH:],
                name=name,
                contact_email=contact_email,
                notes=notes,
                is_active=True,
                rate_limit=rate_limit,
                usage_count=0,
                created_at=now or utcnow(),
                expires_at=expires_at,
                allowed_ips=list(allowed_ips or []),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # Lost a race with a concurrent create for the same client id
                session.rollback()
                raise DuplicateClient()
            return raw_key, CredentialRecord.from_row(row)

    def update(self, client_id: str, fields: Mapping[str, Any]) -> CredentialRecord:
        """
        Apply administrative changes. Names outside MUTABLE_FIELDS are ignored.

        Raises:
            ClientNotFound: If no record has this client_id
        """
        changes = {name: value for name, value in fields.items() if name in MUTABLE_FIELDS}
        if MutableField.ALLOWED_IPS.value in changes:
            changes[MutableField.ALLOWED_IPS.value] = list(changes[MutableField.ALLOWED_IPS.value] or [])

        with self._session() as session:
            row = self._get_row(session, client_id)
            if row is None:
                raise ClientNotFound()
            for name, value in changes.items():
                setattr(row, name, value)
            session.commit()
            return CredentialRecord.from_row(row)

    def rotate(self, client_id: str) -> Tuple[str, CredentialRecord]:
        """
        Replace the key; the previous key stops resolving on commit.

        Raises:
            ClientNotFound: If no record has this client_id
        """
        with self._session() as session:
            row = self._get_row(session, client_id)
            if row is None:
                raise ClientNotFound()
            raw_key = self.generate_key()
            row.key_hash = self.hash_key(raw_key)
            row.key_preview = raw_key[-KEY_PREVIEW_LENGTH:]
            row.usage_count = 0
            row.last_used_at = None
            session.commit()
            return raw_key, CredentialRecord.from_row(row)

    def delete(self, client_id: str, hard: bool = False) -> None:
        """
        Deactivate (soft) or permanently remove (hard) a record.

        Usage events of a hard-deleted client are left to age out.

        Raises:
            ClientNotFound: If no record has this client_id
        """
        with self._session() as session:
            if hard:
                result = session.execute(delete(ApiKey).where(ApiKey.client_id == client_id))
            else:
                result = session.execute(
                    update(ApiKey).where(ApiKey.client_id == client_id).values(is_active=False)
                )
            if result.rowcount == 0:
                session.rollback()
                raise ClientNotFound()
            session.commit()

    def record_usage(self, client_id: str, now: Optional[datetime] = None) -> None:
        """Increment usage_count and stamp last_used in one UPDATE statement"""
        with self._session() as session:
            session.execute(
                update(ApiKey)
                .where(ApiKey.client_id == client_id)
                .values(usage_count=ApiKey.usage_count + 1, last_used_at=now or utcnow())
            )
            session.commit()

    def stats(self, top: int = 10) -> Dict[str, Any]:
        """Key counts and the most used active clients"""
        with self._session() as session:
            total = session.execute(select(func.count(ApiKey.id))).scalar_one()
            active = session.execute(
                select(func.count(ApiKey.id)).where(ApiKey.is_active.is_(True))
            ).scalar_one()
            top_rows = session.execute(
                select(ApiKey)
                .where(ApiKey.is_active.is_(True))
                .order_by(ApiKey.usage_count.desc())
                .limit(top)
            ).scalars()
            return {
                "total": total,
                "active": active,
                "inactive": total - active,
                "top_clients": [CredentialRecord.from_row(row) for row in top_rows],
            }
