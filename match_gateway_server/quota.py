"""
Per-client sliding window quota.

The window is the trailing ``window_seconds`` ending now. Admission counts the
client's ledger events inside the window and, if below the client's limit,
appends a new event. Count and append are separate ledger calls, so concurrent
requests may overshoot the limit by a small burst.

Ledger outages fail open: the request is admitted and goes unrecorded.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import Depends, Request, Response

from match_gateway_server.auth import ClientIdentity, require_api_client
from match_gateway_server.db_models import utcnow
from match_gateway_server.errors import LedgerUnavailable, RateLimitExceeded
from match_gateway_server.health import metrics
from match_gateway_server.logging_config import log_ledger_unavailable, log_rate_limit_exceeded
from match_gateway_server.usage_ledger import UsageLedger

DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_RETRY_AFTER = 3600


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of an admitted request"""
    limit: int
    used: Optional[int]  # None when the ledger was unavailable
    recorded: bool

    @property
    def remaining(self) -> Optional[int]:
        if self.used is None:
            return None
        return max(self.limit - self.used, 0)


class QuotaEnforcer:
    """Admit or reject requests against each client's hourly rate limit"""

    def __init__(
        self,
        ledger: UsageLedger,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        retry_after: int = DEFAULT_RETRY_AFTER,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        self.clock = clock

    def admit(self, identity: ClientIdentity, endpoint: str) -> QuotaDecision:
        """
        Admit a request for identity or raise RateLimitExceeded.

        Args:
            identity: Authenticated caller
            endpoint: Request path recorded on the usage event

        Returns:
            QuotaDecision with the window usage after this request
        """
        now = self.clock()
        window_start = now - timedelta(seconds=self.window_seconds)

        try:
            count = self.ledger.count_since(identity.client_id, window_start)
        except LedgerUnavailable as e:
            metrics.increment_ledger_failure()
            log_ledger_unavailable(identity.client_id, e.__cause__ or e, endpoint=endpoint, stage="count")
            return QuotaDecision(limit=identity.rate_limit, used=None, recorded=False)

        if count >= identity.rate_limit:
            metrics.increment_quota_rejection()
            log_rate_limit_exceeded(
                identity.client_id,
                limit_value=identity.rate_limit,
                current_count=count,
                endpoint=endpoint,
            )
            raise RateLimitExceeded(limit=identity.rate_limit, retry_after=self.retry_after)

        try:
            self.ledger.append(identity.client_id, endpoint, now)
        except LedgerUnavailable as e:
            metrics.increment_ledger_failure()
            log_ledger_unavailable(identity.client_id, e.__cause__ or e, endpoint=endpoint, stage="append")
            return QuotaDecision(limit=identity.rate_limit, used=count, recorded=False)

        return QuotaDecision(limit=identity.rate_limit, used=count + 1, recorded=True)


def enforce_quota(
    request: Request,
    response: Response,
    client: ClientIdentity = Depends(require_api_client),
) -> ClientIdentity:
    """
    FastAPI dependency: authenticate, then admit against the client's quota.

    Usage:
        router = APIRouter(dependencies=[Depends(enforce_quota)])
    """
    enforcer: QuotaEnforcer = request.app.state.quota_enforcer
    decision = enforcer.admit(client, request.url.path)

    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    if decision.remaining is not None:
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    request.state.quota = decision
    return client
