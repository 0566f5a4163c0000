"""
Key lifecycle management: create, regenerate, update and revoke API keys.

The plaintext key appears only in the IssuedKey returned by ``create`` and
``regenerate``; afterwards only the masked preview is available.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from match_gateway_server.credential_store import MUTABLE_FIELDS, CredentialRecord, CredentialStore
from match_gateway_server.db_models import utcnow
from match_gateway_server.errors import ClientNotFound
from match_gateway_server.logging_config import log_key_event

DEFAULT_RATE_LIMIT = 100


@dataclass
class IssuedKey:
    """A freshly generated key and the record it belongs to"""
    api_key: str
    record: CredentialRecord

    def __repr__(self) -> str:
        return f"IssuedKey(client_id={self.record.client_id!r}, api_key='***')"


class KeyLifecycleManager:
    """Administrative operations over the credential store"""

    def __init__(
        self,
        store: CredentialStore,
        default_rate_limit: int = DEFAULT_RATE_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.default_rate_limit = default_rate_limit
        self.clock = clock

    def create(
        self,
        name: str,
        client_id: str,
        rate_limit: Optional[int] = None,
        expires_in_days: Optional[int] = None,
        allowed_ips: Iterable[str] = (),
        contact_email: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> IssuedKey:
        """
        Issue a key for a new client

        Args:
            name: Human-readable client name
            client_id: Stable tenant identifier (must be unused)
            rate_limit: Requests per rolling hour (default applies when None)
            expires_in_days: Expiration in days (None = no expiration)
            allowed_ips: Permitted requester addresses (empty = any)
            contact_email: Optional contact
            notes: Optional free text

        Returns:
            IssuedKey holding the only plaintext copy of the key

        Raises:
            DuplicateClient: If client_id is already taken
        """
        now = self.clock()
        expires_at = None
        if expires_in_days is not None:
            expires_at = now + timedelta(days=expires_in_days)

        raw_key, record = self.store.create(
            client_id=client_id,
            name=name,
            rate_limit=rate_limit if rate_limit is not None else self.default_rate_limit,
            expires_at=expires_at,
            allowed_ips=list(allowed_ips),
            contact_email=contact_email,
            notes=notes,
            now=now,
        )
        log_key_event("created", client_id, name=name, rate_limit=record.rate_limit)
        return IssuedKey(api_key=raw_key, record=record)

    def regenerate(self, client_id: str) -> IssuedKey:
        """Rotate the key; the old one is rejected from now on"""
        raw_key, record = self.store.rotate(client_id)
        log_key_event("regenerated", client_id)
        return IssuedKey(api_key=raw_key, record=record)

    def revoke(self, client_id: str, hard: bool = False) -> None:
        """Deactivate (soft) or permanently delete (hard) a client's key"""
        self.store.delete(client_id, hard=hard)
        log_key_event("deleted" if hard else "deactivated", client_id)

    def update(self, client_id: str, fields: Mapping[str, Any]) -> CredentialRecord:
        record = self.store.update(client_id, fields)
        log_key_event("updated", client_id, fields=sorted(f for f in fields if f in MUTABLE_FIELDS))
        return record

    def get(self, client_id: str) -> CredentialRecord:
        record = self.store.get(client_id)
        if record is None:
            raise ClientNotFound()
        return record

    def list_keys(self, active: Optional[bool] = None, search: Optional[str] = None) -> List[CredentialRecord]:
        return self.store.list_records(active=active, search=search)

    def stats(self, top: int = 10) -> Dict[str, Any]:
        return self.store.stats(top=top)
