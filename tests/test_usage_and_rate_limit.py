"""
Tests for monthly plan limits and public-action rate limiting.
"""
from datetime import datetime, timezone

from quoteledger.models.domain import MonthlyUsage
from quoteledger.models.enums import UserPlan
from quoteledger.services.agreement_service import AgreementService
from quoteledger.services.rate_limit import InMemoryCounterStore, RateLimiter
from quoteledger.services.results import ErrorCode
from quoteledger.services.usage import PLAN_LIMITS, UsageTracker, year_month


class TestPlanLimits:

    def test_plan_table(self):
        assert PLAN_LIMITS[UserPlan.FREE] == 3
        assert PLAN_LIMITS[UserPlan.SOLO] == 20
        assert PLAN_LIMITS[UserPlan.BUSINESS] is None

    def test_free_plan_stops_at_three(self, db_session, free_contractor, agreement_fields):
        agreement_fields["payment_instructions"] = "Cash on the day"
        service = AgreementService(db_session)

        for _ in range(3):
            assert service.create_agreement(free_contractor.id, agreement_fields).success

        fourth = service.create_agreement(free_contractor.id, agreement_fields)

        assert fourth.code == ErrorCode.PLAN_LIMIT
        assert fourth.error.startswith("Plan limit reached. FREE plan allows 3 agreements per month.")
        assert len(service.list_for_owner(free_contractor.id)) == 3

    def test_usage_counted_per_month(self, db_session, contractor, draft_agreement):
        usage = db_session.query(MonthlyUsage).filter(MonthlyUsage.user_id == contractor.id).one()

        assert usage.year_month == year_month()
        assert usage.created_count == 1

    def test_current_usage(self, db_session, contractor, draft_agreement):
        assert UsageTracker(db_session).current(contractor) == {
            "count": 1,
            "limit": None,
            "plan": UserPlan.BUSINESS,
        }

    def test_year_month_format(self):
        assert year_month(datetime(2026, 3, 9, tzinfo=timezone.utc)) == "2026-03"


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestRateLimiter:

    def test_allows_up_to_max_then_blocks(self):
        limiter = RateLimiter(InMemoryCounterStore(), max_requests=5, window_seconds=60, clock=FakeClock())

        decisions = [limiter.check("203.0.113.7", "accept") for _ in range(6)]

        assert [d.allowed for d in decisions] == [True] * 5 + [False]
        assert decisions[4].remaining == 0

    def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(InMemoryCounterStore(), max_requests=1, window_seconds=60, clock=clock)
        assert limiter.check("203.0.113.7", "accept").allowed
        assert not limiter.check("203.0.113.7", "accept").allowed

        clock.now += 61

        assert limiter.check("203.0.113.7", "accept").allowed

    def test_keyed_by_ip_and_action(self):
        limiter = RateLimiter(InMemoryCounterStore(), max_requests=1, window_seconds=60, clock=FakeClock())
        assert limiter.check("203.0.113.7", "accept").allowed

        assert limiter.check("203.0.113.7", "deposit").allowed
        assert limiter.check("198.51.100.1", "accept").allowed
        assert not limiter.check("203.0.113.7", "accept").allowed

    def test_limiters_do_not_share_state(self):
        first = RateLimiter(InMemoryCounterStore(), max_requests=1, window_seconds=60, clock=FakeClock())
        second = RateLimiter(InMemoryCounterStore(), max_requests=1, window_seconds=60, clock=FakeClock())
        first.check("203.0.113.7", "accept")

        assert second.check("203.0.113.7", "accept").allowed
