"""
Health monitoring service for Stablecoin Aggregator.
Records per-source fetch outcomes, derives rolling reliability scores and
owns each source's circuit breaker.
"""

import time
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Iterable, List, Optional, Tuple, Union

from ..api.schemas import (
    CircuitBreakerStatus, CircuitState, FetchErrorKind, HealthAlert,
    RETRYABLE_ERROR_KINDS, SourceHealthStatus, SystemHealth
)
from ..core.config import settings
from ..core.logging_config import create_logger
from .circuit_breaker import CircuitBreaker

logger = create_logger(__name__)

SUCCESS_WEIGHT = 0.7
RESPONSE_TIME_WEIGHT = 0.3
PENALTY_PER_STEP = 0.1
MAX_PENALTY_STEPS = 4
CRITICAL_SCORE = 0.2
CONSECUTIVE_FAILURE_ALERT = 3
MIN_SAMPLES_FOR_ERROR_RATE = 5


class UnknownSourceError(KeyError):
    """Raised when health is requested for a source that was never registered."""


class Outcome:
    """One recorded fetch outcome."""

    __slots__ = ("timestamp", "success", "duration_ms", "error_kind", "retryable")

    def __init__(
        self,
        timestamp: datetime,
        success: bool,
        duration_ms: Optional[float] = None,
        error_kind: Optional[FetchErrorKind] = None,
        retryable: bool = True
    ):
        self.timestamp = timestamp
        self.success = success
        self.duration_ms = duration_ms
        self.error_kind = error_kind
        self.retryable = retryable


class SourceHealth:
    """Mutable health record for one source."""

    def __init__(self, source: str, breaker: CircuitBreaker, window_size: int):
        self.source = source
        self.breaker = breaker
        self.window: Deque[Outcome] = deque(maxlen=window_size)
        self.consecutive_failures = 0
        self.penalty_steps = 0
        self.non_retryable_failures = 0
        self.total_requests = 0
        self.successful_requests = 0
        self.last_error: Optional[str] = None
        self.last_error_kind: Optional[FetchErrorKind] = None
        self.last_success: Optional[datetime] = None
        self.last_failure: Optional[datetime] = None
        self.error_counts: Counter = Counter()


def percentile(values: List[float], pct: float) -> Optional[float]:
    """Nearest-rank percentile of ``values`` (pct in 0..100)."""
    if not values:
        return None
    ordered = sorted(values)
    index = max(0, min(len(ordered) - 1, int(round(pct / 100.0 * len(ordered))) - 1))
    return ordered[index]


class HealthMonitor:
    """Tracks reliability of every data source."""

    def __init__(
        self,
        sources: Optional[Iterable[str]] = None,
        retention_days: Optional[int] = None,
        window_size: Optional[int] = None,
        degraded_threshold: Optional[float] = None,
        response_time_threshold_ms: Optional[float] = None,
        error_rate_threshold: Optional[float] = None,
        min_healthy_sources: Optional[int] = None,
        failure_threshold: Optional[int] = None,
        breaker_timeout: Optional[float] = None,
        breaker_reset_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.utcnow
    ):
        self.retention = timedelta(days=retention_days or settings.health_retention_days)
        self.window_size = window_size or settings.health_window_size
        self.degraded_threshold = (
            degraded_threshold if degraded_threshold is not None else settings.health_degraded_threshold
        )
        self.response_time_threshold_ms = response_time_threshold_ms or settings.response_time_threshold_ms
        self.error_rate_threshold = (
            error_rate_threshold if error_rate_threshold is not None else settings.error_rate_threshold
        )
        self.min_healthy_sources = min_healthy_sources or settings.min_healthy_sources
        self._failure_threshold = failure_threshold
        self._breaker_timeout = breaker_timeout
        self._breaker_reset_timeout = breaker_reset_timeout
        self._clock = clock
        self._now = now

        self._sources: Dict[str, SourceHealth] = {}
        self._alerts: Dict[Tuple[str, str], HealthAlert] = {}

        for source in sources or []:
            self.register_source(source)

    # --- Registration ---------------------------------------------------------

    def register_source(self, source: str) -> SourceHealth:
        """Start tracking a source; registering twice is a no-op."""
        if source not in self._sources:
            breaker = CircuitBreaker(
                source,
                failure_threshold=self._failure_threshold,
                timeout=self._breaker_timeout,
                reset_timeout=self._breaker_reset_timeout,
                clock=self._clock,
                on_state_change=self._on_circuit_change
            )
            self._sources[source] = SourceHealth(source, breaker, self.window_size)
            logger.debug("Registered source for health monitoring", extra={"source": source})
        return self._sources[source]

    @property
    def sources(self) -> List[str]:
        return list(self._sources)

    def _get(self, source: str) -> SourceHealth:
        try:
            return self._sources[source]
        except KeyError:
            raise UnknownSourceError(source) from None

    def get_breaker(self, source: str) -> CircuitBreaker:
        return self._get(source).breaker

    def allow_request(self, source: str) -> bool:
        """Whether a fetch for ``source`` may be issued (delegates to its breaker)."""
        return self.register_source(source).breaker.allow_request()

    # --- Recording ------------------------------------------------------------

    def record_success(self, source: str, duration: float, record_count: int = 0) -> None:
        """
        Record a successful fetch.

        Args:
            source: Source identifier
            duration: Fetch duration in seconds
            record_count: Number of records returned
        """
        health = self.register_source(source)
        now = self._now()

        health.window.append(Outcome(now, True, duration_ms=duration * 1000.0))
        health.total_requests += 1
        health.successful_requests += 1
        health.consecutive_failures = 0
        health.penalty_steps = max(0, health.penalty_steps - 1)
        health.last_success = now
        health.breaker.record_success()

        self._prune(health, now)
        self._clear_alert(source, "consecutive_failures")
        self._update_error_rate_alert(health)

        logger.debug("Recorded source success", extra={
            "source": source,
            "duration_ms": round(duration * 1000.0, 1),
            "record_count": record_count,
            "score": round(self.calculate_score(source), 3)
        })

    def record_failure(
        self,
        source: str,
        error_kind: Union[FetchErrorKind, str] = FetchErrorKind.UNKNOWN,
        retryable: Optional[bool] = None,
        message: Optional[str] = None
    ) -> None:
        """
        Record a failed fetch.

        Every failure counts toward the circuit breaker regardless of kind.
        Non-retryable failures (auth, not-found, parse) are also tallied
        separately so misconfiguration stays distinguishable from outages.
        """
        health = self.register_source(source)
        now = self._now()
        kind = self._coerce_kind(error_kind)
        if retryable is None:
            retryable = kind in RETRYABLE_ERROR_KINDS

        health.window.append(Outcome(now, False, error_kind=kind, retryable=retryable))
        health.total_requests += 1
        health.consecutive_failures += 1
        health.penalty_steps = min(MAX_PENALTY_STEPS, health.penalty_steps + 1)
        health.last_failure = now
        health.last_error = message or kind.value
        health.last_error_kind = kind
        health.error_counts[kind.value] += 1
        if not retryable:
            health.non_retryable_failures += 1
        health.breaker.record_failure()

        self._prune(health, now)

        if health.consecutive_failures >= CONSECUTIVE_FAILURE_ALERT:
            self._raise_alert(
                source, "consecutive_failures", "critical",
                f"{source} failed {health.consecutive_failures} times in a row"
            )
        self._update_error_rate_alert(health)

        logger.warning("Recorded source failure", extra={
            "source": source,
            "error_kind": kind.value,
            "retryable": retryable,
            "consecutive_failures": health.consecutive_failures,
            "circuit_state": health.breaker.state.value,
            "error": health.last_error
        })

    @staticmethod
    def _coerce_kind(error_kind: Union[FetchErrorKind, str]) -> FetchErrorKind:
        if isinstance(error_kind, FetchErrorKind):
            return error_kind
        try:
            return FetchErrorKind(str(error_kind).lower())
        except ValueError:
            return FetchErrorKind.UNKNOWN

    def _prune(self, health: SourceHealth, now: datetime) -> None:
        cutoff = now - self.retention
        while health.window and health.window[0].timestamp < cutoff:
            health.window.popleft()

    # --- Scoring --------------------------------------------------------------

    def calculate_score(self, source: str) -> float:
        """
        Reliability score in [0, 1].

        Weighted success ratio and response-time compliance over the
        retention window, minus a failure-streak penalty that grows with each
        failure and shrinks with each success. An open circuit scores 0 and a
        half-open one is halved.
        """
        health = self._get(source)
        state = health.breaker.state
        if state == CircuitState.OPEN:
            return 0.0

        window = list(health.window)
        if window:
            successes = sum(1 for outcome in window if outcome.success)
            compliant = sum(
                1 for outcome in window
                if outcome.success and outcome.duration_ms is not None
                and outcome.duration_ms <= self.response_time_threshold_ms
            )
            success_ratio = successes / len(window)
            compliance_ratio = compliant / len(window)
        else:
            success_ratio = compliance_ratio = 1.0

        score = SUCCESS_WEIGHT * success_ratio + RESPONSE_TIME_WEIGHT * compliance_ratio
        score -= PENALTY_PER_STEP * health.penalty_steps

        if state == CircuitState.HALF_OPEN:
            score *= 0.5

        return max(0.0, min(1.0, score))

    def _status_for(self, health: SourceHealth, score: float) -> str:
        if health.breaker.state == CircuitState.OPEN:
            return "down"
        if score < CRITICAL_SCORE:
            return "critical"
        if score < self.degraded_threshold:
            return "degraded"
        return "healthy"

    def is_degraded(self, source: str) -> bool:
        return self.calculate_score(source) < self.degraded_threshold

    def healthy_sources(self) -> List[str]:
        return [source for source in self._sources if not self.is_degraded(source)]

    def get_source_health(self, source: str) -> SourceHealthStatus:
        """Derived health view of one source."""
        health = self._get(source)
        score = self.calculate_score(source)
        durations = [o.duration_ms for o in health.window if o.success and o.duration_ms is not None]

        return SourceHealthStatus(
            source=source,
            score=round(score, 4),
            status=self._status_for(health, score),
            degraded=score < self.degraded_threshold,
            circuit_state=health.breaker.state,
            consecutive_failures=health.consecutive_failures,
            non_retryable_failures=health.non_retryable_failures,
            last_error=health.last_error,
            last_error_kind=health.last_error_kind,
            last_success=health.last_success,
            last_failure=health.last_failure,
            total_requests=health.total_requests,
            success_rate=(
                health.successful_requests / health.total_requests if health.total_requests else None
            ),
            average_response_ms=sum(durations) / len(durations) if durations else None,
            p95_response_ms=percentile(durations, 95),
            error_counts=dict(health.error_counts)
        )

    def get_circuit_breaker_status(self) -> Dict[str, CircuitBreakerStatus]:
        return {source: health.breaker.get_status() for source, health in self._sources.items()}

    # --- System view ----------------------------------------------------------

    def check_degraded_mode(self) -> Tuple[bool, List[str]]:
        """Whether the system as a whole should run in degraded mode, and why."""
        reasons: List[str] = []

        healthy = len(self.healthy_sources())
        if healthy < self.min_healthy_sources:
            reasons.append(
                f"Only {healthy} healthy sources (minimum {self.min_healthy_sources})"
            )

        outcomes = [o for health in self._sources.values() for o in health.window]
        if len(outcomes) >= MIN_SAMPLES_FOR_ERROR_RATE:
            error_rate = sum(1 for o in outcomes if not o.success) / len(outcomes)
            if error_rate > self.error_rate_threshold:
                reasons.append(f"High system error rate: {error_rate:.1%}")

        durations = [o.duration_ms for o in outcomes if o.success and o.duration_ms is not None]
        if durations:
            average = sum(durations) / len(durations)
            if average > self.response_time_threshold_ms:
                reasons.append(f"Slow response times: {average:.0f}ms average")

        return bool(reasons), reasons

    def get_system_health(self) -> SystemHealth:
        statuses = {source: self.get_source_health(source) for source in self._sources}
        total = len(statuses)
        healthy = sum(1 for s in statuses.values() if s.status == "healthy")
        operational = sum(1 for s in statuses.values() if s.status in ("healthy", "degraded"))
        average = sum(s.score for s in statuses.values()) / total if total else 0.0

        if operational == 0:
            status = "down"
        elif average < 0.3:
            status = "critical"
        elif average < 0.6 or healthy < total / 2:
            status = "degraded"
        else:
            status = "healthy"

        degraded_mode, reasons = self.check_degraded_mode()

        return SystemHealth(
            status=status,
            operational=operational > 0,
            average_score=round(average, 4),
            healthy_sources=healthy,
            total_sources=total,
            degraded_mode=degraded_mode,
            degraded_reasons=reasons,
            alerts=self.get_alerts(),
            sources=statuses
        )

    def reset_source(self, source: str) -> None:
        """Forget all history for a source and close its breaker."""
        health = self._get(source)
        health.breaker.reset()
        self._sources[source] = SourceHealth(source, health.breaker, self.window_size)
        for key in [key for key in self._alerts if key[0] == source]:
            del self._alerts[key]

    # --- Alerts ---------------------------------------------------------------

    def get_alerts(self) -> List[HealthAlert]:
        return sorted(self._alerts.values(), key=lambda alert: alert.raised_at)

    def _raise_alert(self, source: str, alert_type: str, severity: str, message: str) -> None:
        key = (source, alert_type)
        if key in self._alerts:
            return
        self._alerts[key] = HealthAlert(
            source=source, type=alert_type, severity=severity, message=message, raised_at=self._now()
        )
        logger.warning("Health alert raised", extra={
            "source": source,
            "alert_type": alert_type,
            "severity": severity,
            "alert_message": message
        })

    def _clear_alert(self, source: str, alert_type: str) -> None:
        if self._alerts.pop((source, alert_type), None) is not None:
            logger.info("Health alert cleared", extra={"source": source, "alert_type": alert_type})

    def _update_error_rate_alert(self, health: SourceHealth) -> None:
        window = health.window
        if len(window) < MIN_SAMPLES_FOR_ERROR_RATE:
            return
        error_rate = sum(1 for o in window if not o.success) / len(window)
        if error_rate > self.error_rate_threshold:
            self._raise_alert(
                health.source, "error_rate", "warning",
                f"{health.source} error rate {error_rate:.1%} exceeds {self.error_rate_threshold:.0%}"
            )
        else:
            self._clear_alert(health.source, "error_rate")

    def _on_circuit_change(self, source: str, old_state: CircuitState, new_state: CircuitState) -> None:
        if new_state == CircuitState.OPEN:
            self._raise_alert(source, "circuit_breaker", "critical", f"Circuit breaker opened for {source}")
        elif new_state == CircuitState.CLOSED:
            self._clear_alert(source, "circuit_breaker")
