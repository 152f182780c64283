"""Circuit breaker state transitions under a controlled clock."""

from stablecoin_aggregator.api.schemas import CircuitState
from stablecoin_aggregator.services.circuit_breaker import CircuitBreaker


def _breaker(clock, **kwargs):
    options = dict(failure_threshold=3, timeout=60, reset_timeout=120, clock=clock)
    options.update(kwargs)
    return CircuitBreaker("cmc", **options)


class TestCircuitBreaker:
    def test_starts_closed(self, clock):
        breaker = _breaker(clock)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request()

    def test_opens_at_threshold(self, clock):
        breaker = _breaker(clock)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open
        assert not breaker.allow_request()

    def test_success_resets_failure_count(self, clock):
        breaker = _breaker(clock)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_timeout(self, clock):
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure()

        clock.advance(59)
        assert not breaker.allow_request()

        clock.advance(1)
        assert breaker.allow_request()
        assert breaker.state == CircuitState.HALF_OPEN

    def test_single_trial_in_half_open(self, clock):
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)

        assert breaker.allow_request()
        assert not breaker.allow_request()

    def test_trial_success_closes(self, clock):
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)
        breaker.allow_request()

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_trial_failure_reopens_and_restarts_timeout(self, clock):
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)
        breaker.allow_request()

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        clock.advance(30)
        assert not breaker.allow_request()
        clock.advance(30)
        assert breaker.allow_request()

    def test_stale_trial_is_released(self, clock):
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)
        assert breaker.allow_request()

        clock.advance(120)
        assert breaker.allow_request()
        assert breaker.state == CircuitState.HALF_OPEN

    def test_success_while_open_is_ignored(self, clock):
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        breaker.record_success()
        assert breaker.state == CircuitState.OPEN

    def test_state_listener_and_status(self, clock):
        changes = []
        breaker = _breaker(clock, on_state_change=lambda source, old, new: changes.append((source, old, new)))
        for _ in range(3):
            breaker.record_failure()

        assert changes == [("cmc", CircuitState.CLOSED, CircuitState.OPEN)]
        status = breaker.get_status()
        assert status.is_open
        assert status.failure_count == 3
        assert status.opened_at is not None

    def test_reset(self, clock):
        breaker = _breaker(clock)
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request()
