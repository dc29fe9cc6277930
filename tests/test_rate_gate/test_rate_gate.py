"""
Tests for RateBudget and RateGate.

Covers:
- RateBudget validation and header parsing
- reserve() policy: plenty, low-water, exhausted, query failure
- Budget reuse when the quota query itself costs quota
- quota_low / quota_exhausted events
"""

from unittest.mock import MagicMock

import pytest

from copilot_catalog.config.schema import RateLimitConfig
from copilot_catalog.core.events import CatalogEvent, EventBus
from copilot_catalog.remote.errors import RemoteUnavailable
from copilot_catalog.remote.rate_gate import RateBudget, RateGate

NOW = 1_700_000_000.0


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def config() -> RateLimitConfig:
    return RateLimitConfig()


def make_gate(config: RateLimitConfig, budget: RateBudget | Exception, events=None):
    source = MagicMock()
    if isinstance(budget, Exception):
        source.side_effect = budget
    else:
        source.return_value = budget
    gate = RateGate(config, source, clock=lambda: NOW, events=events)
    return gate, source


# ── Tests: RateBudget ───────────────────────────────────────────────────────


class TestRateBudget:
    def test_frozen(self):
        budget = RateBudget(remaining=1, limit=60, reset_at=NOW)
        with pytest.raises(AttributeError):
            budget.remaining = 2  # type: ignore[misc]

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            RateBudget(remaining=-1, limit=60, reset_at=NOW)

    def test_remaining_above_limit_rejected(self):
        with pytest.raises(ValueError):
            RateBudget(remaining=61, limit=60, reset_at=NOW)

    def test_reset_in_never_negative(self):
        budget = RateBudget(remaining=0, limit=60, reset_at=NOW - 30)
        assert budget.reset_in(NOW) == 0.0

    def test_exhausted(self):
        assert RateBudget(remaining=0, limit=60, reset_at=NOW).exhausted
        assert not RateBudget(remaining=1, limit=60, reset_at=NOW).exhausted

    def test_from_headers(self):
        budget = RateBudget.from_headers({
            "x-ratelimit-remaining": "42",
            "x-ratelimit-limit": "60",
            "x-ratelimit-reset": str(int(NOW)),
        })
        assert budget == RateBudget(remaining=42, limit=60, reset_at=NOW)

    @pytest.mark.parametrize("headers", [
        {},
        {"x-ratelimit-remaining": "x", "x-ratelimit-limit": "60", "x-ratelimit-reset": "1"},
        {"x-ratelimit-remaining": "70", "x-ratelimit-limit": "60", "x-ratelimit-reset": "1"},
    ])
    def test_from_headers_invalid(self, headers):
        assert RateBudget.from_headers(headers) is None


# ── Tests: reserve ──────────────────────────────────────────────────────────


class TestReserve:
    def test_plenty_of_quota_no_wait(self, config):
        gate, _ = make_gate(config, RateBudget(remaining=50, limit=60, reset_at=NOW + 600))
        assert gate.reserve() == 0.0

    def test_low_water_waits_fixed_delay(self, config):
        gate, _ = make_gate(config, RateBudget(remaining=5, limit=60, reset_at=NOW + 600))
        assert gate.reserve() == config.low_water_delay

    def test_low_water_delay_capped_by_reset(self, config):
        gate, _ = make_gate(config, RateBudget(remaining=2, limit=60, reset_at=NOW + 0.25))
        assert gate.reserve() == pytest.approx(0.25)

    def test_exhausted_waits_until_reset_plus_margin(self, config):
        gate, _ = make_gate(config, RateBudget(remaining=0, limit=60, reset_at=NOW + 30))
        assert gate.reserve() == pytest.approx(30 + config.safety_margin)

    def test_exhausted_after_reset_waits_only_margin(self, config):
        gate, _ = make_gate(config, RateBudget(remaining=0, limit=60, reset_at=NOW - 5))
        assert gate.reserve() == pytest.approx(config.safety_margin)

    def test_query_failure_fails_open(self, config):
        gate, _ = make_gate(config, RemoteUnavailable("boom"))
        assert gate.reserve() == config.fail_open_delay

    def test_queries_every_time_by_default(self, config):
        gate, source = make_gate(config, RateBudget(remaining=50, limit=60, reset_at=NOW + 600))
        gate.reserve()
        gate.reserve()
        assert source.call_count == 2

    def test_reuses_budget_when_query_costs_quota(self):
        config = RateLimitConfig(query_consumes_quota=True)
        gate, source = make_gate(config, RateBudget(remaining=50, limit=60, reset_at=NOW + 600))
        gate.reserve()
        gate.reserve()
        assert source.call_count == 1

    def test_observed_budget_is_last_known(self, config):
        gate, _ = make_gate(config, RateBudget(remaining=50, limit=60, reset_at=NOW + 600))
        observed = RateBudget(remaining=7, limit=60, reset_at=NOW + 10)
        gate.observe(observed)
        gate.observe(None)
        assert gate.last_known == observed


# ── Tests: events ───────────────────────────────────────────────────────────


class TestQuotaEvents:
    def test_low_emits_quota_low(self, config):
        bus = EventBus()
        received = []
        bus.subscribe(CatalogEvent.QUOTA_LOW, lambda **kw: received.append(kw))
        gate, _ = make_gate(
            config, RateBudget(remaining=3, limit=60, reset_at=NOW + 600), events=bus
        )
        gate.reserve()
        assert received == [{"remaining": 3, "reset_at": NOW + 600}]

    def test_exhausted_emits_quota_exhausted(self, config):
        bus = EventBus()
        received = []
        bus.subscribe(CatalogEvent.QUOTA_EXHAUSTED, lambda **kw: received.append(kw))
        gate, _ = make_gate(
            config, RateBudget(remaining=0, limit=60, reset_at=NOW + 60), events=bus
        )
        gate.reserve()
        assert received == [{"remaining": 0, "reset_at": NOW + 60}]

    def test_plenty_emits_nothing(self, config):
        bus = EventBus()
        listener = MagicMock()
        bus.subscribe(CatalogEvent.QUOTA_LOW, listener)
        gate, _ = make_gate(
            config, RateBudget(remaining=40, limit=60, reset_at=NOW + 600), events=bus
        )
        gate.reserve()
        listener.assert_not_called()
