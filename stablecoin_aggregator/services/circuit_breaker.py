"""
Per-source circuit breaker.
Gates whether a fetch attempt for a source is issued at all.

States:
- CLOSED: normal operation, requests pass through.
- OPEN: source is failing, requests are skipped without a network call.
- HALF_OPEN: after the timeout, a single trial request is permitted.

Transitions:
- CLOSED -> OPEN: consecutive failures reach ``failure_threshold``.
- OPEN -> HALF_OPEN: ``timeout`` seconds have elapsed since entering OPEN.
- HALF_OPEN -> CLOSED: the trial request succeeds.
- HALF_OPEN -> OPEN: the trial request fails; the timeout restarts.
"""

import time
from datetime import datetime
from typing import Callable, Optional

from ..api.schemas import CircuitState, CircuitBreakerStatus
from ..core.config import settings
from ..core.logging_config import create_logger

logger = create_logger(__name__)

StateListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """Consecutive-failure circuit breaker for one source."""

    def __init__(
        self,
        source: str,
        failure_threshold: Optional[int] = None,
        timeout: Optional[float] = None,
        reset_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateListener] = None
    ):
        self.source = source
        self.failure_threshold = failure_threshold or settings.circuit_breaker_failure_threshold
        self.timeout = timeout if timeout is not None else settings.circuit_breaker_timeout
        self.reset_timeout = reset_timeout if reset_timeout is not None else settings.circuit_breaker_reset_timeout
        self._clock = clock
        self._on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._opened_at_wall: Optional[datetime] = None
        self._last_failure: Optional[datetime] = None
        self._trial_started_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def allow_request(self) -> bool:
        """
        Decide whether a fetch may be issued now.

        An OPEN breaker whose timeout has elapsed moves to HALF_OPEN here and
        grants the single trial request. While the trial is outstanding,
        further requests are refused until it reports or ``reset_timeout``
        passes without a report.
        """
        now = self._clock()

        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and now - self._opened_at >= self.timeout:
                self._transition(CircuitState.HALF_OPEN)
                self._trial_started_at = now
                return True
            return False

        # HALF_OPEN
        if self._trial_started_at is None or now - self._trial_started_at >= self.reset_timeout:
            logger.info("Releasing stale circuit breaker trial", extra={"source": self.source})
            self._trial_started_at = now
            return True
        return False

    def record_success(self) -> None:
        """Record a successful call."""
        if self._state == CircuitState.HALF_OPEN:
            self._failure_count = 0
            self._trial_started_at = None
            self._opened_at = None
            self._opened_at_wall = None
            self._transition(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0
        else:
            # A call dispatched before the breaker opened; OPEN only leaves via HALF_OPEN
            logger.debug("Ignoring success while circuit is open", extra={"source": self.source})

    def record_failure(self) -> None:
        """Record a failed call of any category."""
        self._failure_count += 1
        self._last_failure = datetime.utcnow()

        if self._state == CircuitState.HALF_OPEN:
            self._trial_started_at = None
            self._open()
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._open()

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._failure_count = 0
        self._trial_started_at = None
        self._opened_at = None
        self._opened_at_wall = None
        if self._state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def get_status(self) -> CircuitBreakerStatus:
        return CircuitBreakerStatus(
            source=self.source,
            state=self._state,
            is_open=self.is_open,
            failure_count=self._failure_count,
            opened_at=self._opened_at_wall,
            last_failure=self._last_failure
        )

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._opened_at_wall = datetime.utcnow()
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log("Circuit breaker state changed", extra={
            "source": self.source,
            "from_state": old_state.value,
            "to_state": new_state.value,
            "failure_count": self._failure_count,
            "timeout": self.timeout
        })

        if self._on_state_change is not None:
            self._on_state_change(self.source, old_state, new_state)
