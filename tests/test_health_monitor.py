"""
Tests for per-source health scoring.

Verifies that:
- Sources without history score 1.0
- Failures lower the score and trip the breaker at the threshold
- Non-retryable failures count toward the breaker and are tallied separately
- Old outcomes fall out of the retention window
- Alerts are raised and cleared
"""

import pytest

from stablecoin_aggregator.api.schemas import CircuitState, FetchErrorKind
from stablecoin_aggregator.services.health_monitor import HealthMonitor, UnknownSourceError, percentile


@pytest.fixture
def monitor(clock, wall_clock):
    return HealthMonitor(
        sources=["cmc", "coingecko"],
        retention_days=7,
        window_size=100,
        degraded_threshold=0.5,
        response_time_threshold_ms=10000,
        error_rate_threshold=0.3,
        min_healthy_sources=1,
        failure_threshold=3,
        breaker_timeout=60,
        breaker_reset_timeout=120,
        clock=clock,
        now=wall_clock
    )


class TestScoring:
    def test_no_history_scores_one(self, monitor):
        assert monitor.calculate_score("cmc") == 1.0
        health = monitor.get_source_health("cmc")
        assert health.status == "healthy"
        assert health.success_rate is None

    def test_fast_success_scores_one(self, monitor):
        monitor.record_success("cmc", 0.2, record_count=50)
        assert monitor.calculate_score("cmc") == pytest.approx(1.0)

    def test_slow_success_loses_compliance_weight(self, monitor):
        monitor.record_success("cmc", 20.0)
        assert monitor.calculate_score("cmc") == pytest.approx(0.7)

    def test_failure_applies_ratio_and_penalty(self, monitor):
        monitor.record_success("cmc", 0.2)
        monitor.record_failure("cmc", FetchErrorKind.SERVER)
        # 0.7 * 0.5 + 0.3 * 0.5 - 0.1
        assert monitor.calculate_score("cmc") == pytest.approx(0.4)
        assert monitor.get_source_health("cmc").status == "degraded"
        assert monitor.is_degraded("cmc")

    def test_success_reduces_penalty(self, monitor):
        monitor.record_failure("cmc", FetchErrorKind.SERVER)
        monitor.record_success("cmc", 0.2)
        # 0.7 * 0.5 + 0.3 * 0.5, penalty back to zero
        assert monitor.calculate_score("cmc") == pytest.approx(0.5)

    def test_open_breaker_scores_zero(self, monitor):
        for _ in range(3):
            monitor.record_failure("cmc", FetchErrorKind.TIMEOUT)

        assert monitor.get_breaker("cmc").state == CircuitState.OPEN
        assert monitor.calculate_score("cmc") == 0.0
        health = monitor.get_source_health("cmc")
        assert health.status == "down"
        assert health.consecutive_failures == 3
        assert health.error_counts == {"timeout": 3}

    def test_half_open_halves_score(self, monitor, clock):
        for _ in range(3):
            monitor.record_failure("cmc", FetchErrorKind.TIMEOUT)
        clock.advance(60)
        assert monitor.allow_request("cmc")
        assert monitor.get_breaker("cmc").state == CircuitState.HALF_OPEN
        assert monitor.calculate_score("cmc") == 0.0

    def test_score_stays_in_range(self, monitor):
        for _ in range(2):
            monitor.record_failure("cmc", FetchErrorKind.NETWORK)
        assert 0.0 <= monitor.calculate_score("cmc") <= 1.0


class TestFailureCategories:
    def test_non_retryable_failures_tallied_and_counted(self, monitor):
        monitor.record_failure("cmc", FetchErrorKind.AUTH, message="bad key")
        monitor.record_failure("cmc", FetchErrorKind.PARSE)
        monitor.record_failure("cmc", FetchErrorKind.SERVER)

        health = monitor.get_source_health("cmc")
        assert health.non_retryable_failures == 2
        assert health.last_error_kind == FetchErrorKind.SERVER
        assert monitor.get_breaker("cmc").state == CircuitState.OPEN

    def test_string_kinds_are_coerced(self, monitor):
        monitor.record_failure("cmc", "rate_limit")
        monitor.record_failure("cmc", "something-else")
        assert monitor.get_source_health("cmc").error_counts == {"rate_limit": 1, "unknown": 1}


class TestRetention:
    def test_old_outcomes_are_pruned(self, monitor, wall_clock):
        monitor.record_failure("cmc", FetchErrorKind.SERVER)
        wall_clock.advance(days=8)
        monitor.record_success("cmc", 0.1)

        assert monitor.calculate_score("cmc") == pytest.approx(1.0)
        assert monitor.get_source_health("cmc").total_requests == 2


class TestRegistration:
    def test_unknown_source_raises(self, monitor):
        with pytest.raises(UnknownSourceError):
            monitor.get_source_health("nope")

    def test_recording_registers_source(self, monitor):
        monitor.record_success("defillama", 0.3)
        assert "defillama" in monitor.sources

    def test_reset_source(self, monitor):
        for _ in range(3):
            monitor.record_failure("cmc", FetchErrorKind.SERVER)
        monitor.reset_source("cmc")

        assert monitor.get_breaker("cmc").state == CircuitState.CLOSED
        assert monitor.calculate_score("cmc") == 1.0
        assert monitor.get_alerts() == []


class TestAlertsAndSystemHealth:
    def test_consecutive_failure_alert_raised_and_cleared(self, monitor):
        for _ in range(2):
            monitor.record_failure("coingecko", FetchErrorKind.NETWORK)
        assert monitor.get_alerts() == []

        monitor.record_failure("coingecko", FetchErrorKind.NETWORK)
        types = {alert.type for alert in monitor.get_alerts()}
        assert "consecutive_failures" in types
        assert "circuit_breaker" in types

    def test_error_rate_alert(self, monitor):
        for _ in range(3):
            monitor.record_success("cmc", 0.1)
        monitor.record_failure("cmc", FetchErrorKind.SERVER)
        monitor.record_failure("cmc", FetchErrorKind.SERVER)

        alerts = [alert for alert in monitor.get_alerts() if alert.type == "error_rate"]
        assert len(alerts) == 1
        assert alerts[0].source == "cmc"

    def test_degraded_mode_when_too_few_healthy(self, clock, wall_clock):
        monitor = HealthMonitor(
            sources=["cmc"], min_healthy_sources=2, failure_threshold=3, clock=clock, now=wall_clock
        )
        degraded, reasons = monitor.check_degraded_mode()
        assert degraded
        assert "healthy sources" in reasons[0]

    def test_system_down_when_every_breaker_open(self, monitor):
        for source in ("cmc", "coingecko"):
            for _ in range(3):
                monitor.record_failure(source, FetchErrorKind.SERVER)

        system = monitor.get_system_health()
        assert system.status == "down"
        assert not system.operational
        assert system.total_sources == 2

    def test_system_healthy(self, monitor):
        monitor.record_success("cmc", 0.1)
        monitor.record_success("coingecko", 0.1)
        system = monitor.get_system_health()
        assert system.status == "healthy"
        assert system.healthy_sources == 2


def test_percentile():
    assert percentile([], 95) is None
    assert percentile([5.0, 1.0, 3.0], 50) == 3.0
    assert percentile([float(i) for i in range(1, 101)], 95) == 95.0
