"""
Gateway error taxonomy.

Each error carries the HTTP status, the machine-readable code and the
user-facing message of the fixed failure body
``{"success": false, "error": ..., "code": ...}``.
"""
from typing import Any, Dict, Optional

from fastapi import status


class GatewayError(Exception):
    """Base class for every error the gateway reports to a caller."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def extra(self) -> Dict[str, Any]:
        """Additional body fields for this error"""
        return {}

    def headers(self) -> Dict[str, str]:
        return {}

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "code": self.code,
            **self.extra(),
        }


# Authentication failures: user-facing, never retried automatically

class AuthFailure(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED


class MissingKey(AuthFailure):
    code = "MISSING_API_KEY"
    message = "API key is required"


class InvalidKey(AuthFailure):
    code = "INVALID_API_KEY"
    message = "Invalid API key"


class DisabledKey(AuthFailure):
    status_code = status.HTTP_403_FORBIDDEN
    code = "DISABLED_API_KEY"
    message = "API key is disabled"


class ExpiredKey(AuthFailure):
    status_code = status.HTTP_403_FORBIDDEN
    code = "EXPIRED_API_KEY"
    message = "API key has expired"


class IPNotAllowed(AuthFailure):
    status_code = status.HTTP_403_FORBIDDEN
    code = "IP_NOT_ALLOWED"
    message = "IP address not allowed"


# Quota failures: retry permitted after the advertised interval

class QuotaFailure(GatewayError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class RateLimitExceeded(QuotaFailure):
    code = "RATE_LIMIT_EXCEEDED"
    message = "Rate limit exceeded"

    def __init__(self, limit: int, retry_after: int = 3600):
        super().__init__()
        self.limit = limit
        self.retry_after = retry_after

    def extra(self) -> Dict[str, Any]:
        return {"limit": self.limit, "retryAfter": self.retry_after}

    def headers(self) -> Dict[str, str]:
        return {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
        }


# Infrastructure failures: internal, the underlying error is never echoed

class InfrastructureFailure(GatewayError):
    pass


class CredentialStoreUnavailable(InfrastructureFailure):
    code = "AUTH_ERROR"
    message = "Authentication failed"


class LedgerUnavailable(InfrastructureFailure):
    code = "LEDGER_ERROR"
    message = "Usage ledger unavailable"


# Administrative failures

class AdminAuthRequired(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "ADMIN_AUTH_REQUIRED"
    message = "Admin credentials required"


class DuplicateClient(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "DUPLICATE_CLIENT"
    message = "Client ID already exists"


class ClientNotFound(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "API_KEY_NOT_FOUND"
    message = "API key not found"


class DownstreamUnavailable(GatewayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "DOWNSTREAM_UNAVAILABLE"
    message = "Profile service unavailable"


class DownstreamNotConfigured(DownstreamUnavailable):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Profile service is not configured"
