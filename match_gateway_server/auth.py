"""
Authentication gate: resolves a presented API key to a client identity
and enforces the key's standing (active, unexpired, IP permitted).

Checks run in a fixed order so the reported error is deterministic when
several conditions hold at once. Credential store outages fail closed.
"""
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence

from fastapi import Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from match_gateway_server.config import settings
from match_gateway_server.credential_store import CredentialStore
from match_gateway_server.db_models import utcnow
from match_gateway_server.errors import (
    AdminAuthRequired,
    AuthFailure,
    CredentialStoreUnavailable,
    DisabledKey,
    ExpiredKey,
    InvalidKey,
    IPNotAllowed,
    MissingKey,
)
from match_gateway_server.health import metrics
from match_gateway_server.logging_config import get_logger, log_auth_failure, log_exception

logger = get_logger(__name__)

# Security schemes (OpenAPI documentation; extraction itself goes through KEY_EXTRACTORS)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)
admin_password_header = APIKeyHeader(name="X-Admin-Password", auto_error=False)

KeyExtractor = Callable[[Request], Optional[str]]


def extract_from_api_key_header(request: Request) -> Optional[str]:
    """X-API-Key: <key>"""
    value = request.headers.get("X-API-Key")
    if value:
        return value.strip() or None
    return None


def extract_from_bearer(request: Request) -> Optional[str]:
    """Authorization: Bearer <key>"""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):].strip() or None
    return None


# Tried in order, first match wins
KEY_EXTRACTORS: Sequence[KeyExtractor] = (
    extract_from_api_key_header,
    extract_from_bearer,
)


def extract_api_key(request: Request, extractors: Sequence[KeyExtractor] = KEY_EXTRACTORS) -> Optional[str]:
    for extractor in extractors:
        api_key = extractor(request)
        if api_key:
            return api_key
    return None


def get_client_ip(request: Request, trust_proxy_headers: bool = False) -> Optional[str]:
    """
    Requester address used for allow-list checks.

    With trust_proxy_headers the left-most X-Forwarded-For entry wins, the
    address the first proxy saw.
    """
    if trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@dataclass(frozen=True)
class ClientIdentity:
    """What downstream handlers learn about the caller"""
    client_id: str
    name: str
    rate_limit: int

    def to_dict(self) -> Dict[str, object]:
        return {"clientId": self.client_id, "name": self.name, "rateLimit": self.rate_limit}


class AuthenticationGate:
    """Resolve API keys against the credential store"""

    def __init__(
        self,
        store: CredentialStore,
        trust_proxy_headers: bool = False,
        clock: Callable[[], datetime] = utcnow,
        extractors: Sequence[KeyExtractor] = KEY_EXTRACTORS,
    ):
        self.store = store
        self.trust_proxy_headers = trust_proxy_headers
        self.clock = clock
        self.extractors = extractors

    def resolve(self, api_key: Optional[str], client_ip: Optional[str]) -> ClientIdentity:
        """
        Validate an API key and return the caller's identity

        Args:
            api_key: The raw key as presented, or None when absent
            client_ip: Requester address

        Returns:
            ClientIdentity of the key's owner

        Raises:
            MissingKey, InvalidKey, DisabledKey, ExpiredKey, IPNotAllowed:
                Standing check failures, in this order of precedence
            CredentialStoreUnavailable: If the store cannot be queried
        """
        if not api_key:
            raise MissingKey()

        record = self.store.lookup(api_key)
        if record is None:
            raise InvalidKey()

        if not record.is_active:
            raise DisabledKey()

        now = self.clock()
        if record.is_expired(now):
            raise ExpiredKey()

        if record.allowed_ips and client_ip not in record.allowed_ips:
            raise IPNotAllowed()

        # Advisory telemetry: the decision above stands even if this write fails
        try:
            self.store.record_usage(record.client_id, now)
        except CredentialStoreUnavailable as e:
            logger.warning(
                "usage_count_update_failed",
                client_id=record.client_id,
                error_type=type(e.__cause__ or e).__name__,
            )

        return ClientIdentity(
            client_id=record.client_id,
            name=record.name,
            rate_limit=record.rate_limit,
        )

    def authenticate(self, request: Request) -> ClientIdentity:
        """Extract, resolve and attach the identity to request.state.api_client"""
        client_ip = get_client_ip(request, self.trust_proxy_headers)
        api_key = extract_api_key(request, self.extractors)

        try:
            identity = self.resolve(api_key, client_ip)
        except AuthFailure as e:
            metrics.increment_auth_failure(e.code)
            log_auth_failure(e.code, client_ip=client_ip, path=request.url.path)
            raise
        except CredentialStoreUnavailable as e:
            metrics.increment_auth_failure(e.code)
            log_exception(e.__cause__ or e, context={"path": request.url.path, "stage": "authentication"})
            raise

        metrics.increment_authenticated()
        request.state.api_client = identity
        return identity


# FastAPI dependencies

def require_api_client(
    request: Request,
    _header_key: Optional[str] = Security(api_key_header),
    _bearer: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> ClientIdentity:
    """
    FastAPI dependency to require and validate an API key

    Usage:
        @router.get("/endpoint")
        def endpoint(client: ClientIdentity = Depends(require_api_client)):
            ...
    """
    gate: AuthenticationGate = request.app.state.auth_gate
    return gate.authenticate(request)


def verify_admin_password(password: Optional[str]) -> bool:
    """Constant-time comparison against ADMIN_PASSWORD"""
    if not password:
        return False
    return secrets.compare_digest(password.encode(), settings.admin_password.encode())


def require_admin(password: Optional[str] = Security(admin_password_header)) -> None:
    """FastAPI dependency guarding the key administration routes"""
    if not verify_admin_password(password):
        raise AdminAuthRequired()
