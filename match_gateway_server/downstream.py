"""
HTTP client for the downstream profile-matching service.

The gateway forwards admitted requests together with the resolved identity
headers; nothing else from the credential record is passed on.
"""
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from match_gateway_server.auth import ClientIdentity
from match_gateway_server.errors import DownstreamNotConfigured, DownstreamUnavailable
from match_gateway_server.logging_config import get_logger

logger = get_logger(__name__)


def identity_headers(identity: ClientIdentity) -> Dict[str, str]:
    """
    Headers describing the caller to the profile service.

    X-Client-Name is the UTF-8 name percent-encoded (RFC 3986); the receiver
    decodes it with decodeURIComponent or urllib.parse.unquote.
    """
    return {
        "X-Client-Id": identity.client_id,
        "X-Client-Name": quote(identity.name, safe=""),
        "X-Client-Rate-Limit": str(identity.rate_limit),
    }


class ProfileServiceClient:
    """Forward requests to the profile-matching service"""

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self._client = None
        if base_url:
            self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def forward(
        self,
        method: str,
        path: str,
        identity: ClientIdentity,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Send one request downstream

        Raises:
            DownstreamNotConfigured: If DOWNSTREAM_URL is unset
            DownstreamUnavailable: On connection errors and timeouts
        """
        if self._client is None:
            raise DownstreamNotConfigured()
        try:
            return await self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers=identity_headers(identity),
            )
        except httpx.HTTPError as e:
            logger.error(
                "downstream_request_failed",
                method=method,
                path=path,
                client_id=identity.client_id,
                error_type=type(e).__name__,
            )
            raise DownstreamUnavailable() from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
