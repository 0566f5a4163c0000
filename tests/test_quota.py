"""
Unit tests for the sliding window quota
"""
from datetime import timedelta
from unittest.mock import Mock

import pytest

from match_gateway_server.auth import ClientIdentity
from match_gateway_server.errors import LedgerUnavailable, RateLimitExceeded
from match_gateway_server.health import metrics
from match_gateway_server.quota import QuotaDecision, QuotaEnforcer


@pytest.fixture
def identity():
    return ClientIdentity(client_id="acme_1", name="Acme", rate_limit=2)


class TestAdmission:
    """Test suite for QuotaEnforcer.admit"""

    def test_under_limit_admitted(self, enforcer, identity, ledger, clock):
        decision = enforcer.admit(identity, "/api/v1/matches")

        assert decision == QuotaDecision(limit=2, used=1, recorded=True)
        assert decision.remaining == 1
        assert ledger.count_since("acme_1", clock.now - timedelta(hours=1)) == 1

    def test_limit_reached_rejected(self, enforcer, identity):
        enforcer.admit(identity, "/api/v1/matches")
        second = enforcer.admit(identity, "/api/v1/matches")
        assert second.remaining == 0

        with pytest.raises(RateLimitExceeded) as exc_info:
            enforcer.admit(identity, "/api/v1/matches")

        error = exc_info.value
        assert error.status_code == 429
        assert error.to_response() == {
            "success": False,
            "error": "Rate limit exceeded",
            "code": "RATE_LIMIT_EXCEEDED",
            "limit": 2,
            "retryAfter": 3600,
        }
        assert metrics.quota_rejections == 1

    def test_rejection_not_recorded(self, enforcer, identity, ledger, clock):
        enforcer.admit(identity, "/a")
        enforcer.admit(identity, "/a")
        for _ in range(3):
            with pytest.raises(RateLimitExceeded):
                enforcer.admit(identity, "/a")

        assert ledger.count_since("acme_1", clock.now - timedelta(hours=1)) == 2

    def test_window_slides(self, enforcer, identity, clock):
        enforcer.admit(identity, "/a")
        clock.advance(minutes=30)
        enforcer.admit(identity, "/a")

        with pytest.raises(RateLimitExceeded):
            enforcer.admit(identity, "/a")

        # The first event leaves the window; the second one is still inside it
        clock.advance(minutes=30, seconds=1)
        assert enforcer.admit(identity, "/a").used == 2

        with pytest.raises(RateLimitExceeded):
            enforcer.admit(identity, "/a")

    def test_full_reset_after_window(self, enforcer, identity, clock):
        enforcer.admit(identity, "/a")
        enforcer.admit(identity, "/a")

        clock.advance(hours=1, seconds=1)

        assert enforcer.admit(identity, "/a").used == 1

    def test_clients_counted_independently(self, enforcer, identity):
        other = ClientIdentity(client_id="globex", name="Globex", rate_limit=2)
        enforcer.admit(identity, "/a")
        enforcer.admit(identity, "/a")

        assert enforcer.admit(other, "/a").used == 1

    def test_limit_follows_identity(self, enforcer, identity):
        """A raised rate_limit takes effect on the next request"""
        enforcer.admit(identity, "/a")
        enforcer.admit(identity, "/a")

        raised = ClientIdentity(client_id="acme_1", name="Acme", rate_limit=3)
        assert enforcer.admit(raised, "/a").used == 3

    def test_custom_retry_after(self, ledger, clock, identity):
        enforcer = QuotaEnforcer(ledger, window_seconds=60, retry_after=60, clock=clock)
        enforcer.admit(identity, "/a")
        enforcer.admit(identity, "/a")

        with pytest.raises(RateLimitExceeded) as exc_info:
            enforcer.admit(identity, "/a")

        assert exc_info.value.headers()["Retry-After"] == "60"


class TestLedgerOutage:
    """Ledger failures admit the request"""

    def test_count_failure_fails_open(self, clock, identity):
        ledger = Mock()
        ledger.count_since.side_effect = LedgerUnavailable()
        enforcer = QuotaEnforcer(ledger, clock=clock)

        decision = enforcer.admit(identity, "/a")

        assert decision == QuotaDecision(limit=2, used=None, recorded=False)
        assert decision.remaining is None
        ledger.append.assert_not_called()
        assert metrics.ledger_failures == 1

    def test_append_failure_fails_open(self, clock, identity):
        ledger = Mock()
        ledger.count_since.return_value = 0
        ledger.append.side_effect = LedgerUnavailable()
        enforcer = QuotaEnforcer(ledger, clock=clock)

        decision = enforcer.admit(identity, "/a")

        assert decision.recorded is False
        assert decision.used == 0

    def test_over_limit_still_rejected_when_count_works(self, clock, identity):
        ledger = Mock()
        ledger.count_since.return_value = 2
        enforcer = QuotaEnforcer(ledger, clock=clock)

        with pytest.raises(RateLimitExceeded):
            enforcer.admit(identity, "/a")

    def test_window_start_passed_to_ledger(self, clock, identity):
        ledger = Mock()
        ledger.count_since.return_value = 0
        enforcer = QuotaEnforcer(ledger, window_seconds=3600, clock=clock)

        enforcer.admit(identity, "/api/v1/profiles")

        ledger.count_since.assert_called_once_with("acme_1", clock.now - timedelta(seconds=3600))
        ledger.append.assert_called_once_with("acme_1", "/api/v1/profiles", clock.now)
