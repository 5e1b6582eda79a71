"""
Circuit breaker for the bet aggregator.

Uses pybreaker. After ``DEFAULT_FAIL_MAX`` consecutive failures the breaker
opens and sync calls fail fast with ``CircuitBreakerError`` until
``DEFAULT_RESET_TIMEOUT`` seconds have passed; then one trial request is let
through (half-open).

Client errors (4xx) mean the request itself is wrong, not that the
aggregator is down, so they never count toward opening the circuit.

Usage:
    with aggregator_breaker.calling():
        response = await client.get(url)
"""
import httpx
from pybreaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerListener

from app.core.logging import get_logger
from app.core.metrics import circuit_breaker_failures_total, circuit_breaker_state

logger = get_logger(__name__)

DEFAULT_FAIL_MAX = 5  # Number of failures before opening circuit
DEFAULT_RESET_TIMEOUT = 60  # Seconds before attempting to close circuit

_STATE_VALUES = {"closed": 0, "open": 1, "half-open": 2}

__all__ = [
    "aggregator_breaker",
    "CircuitBreakerError",
    "get_breaker_state",
    "reset_breaker",
]


def _is_client_error(exc: BaseException) -> bool:
    return (
        isinstance(exc, httpx.HTTPStatusError)
        and exc.response is not None
        and exc.response.status_code < 500
    )


class MetricsListener(CircuitBreakerListener):
    """Mirrors breaker state and failures into Prometheus."""

    def state_change(self, cb, old_state, new_state):
        circuit_breaker_state.labels(service=cb.name).set(_STATE_VALUES.get(new_state.name, 0))
        logger.warning(
            f"Circuit breaker '{cb.name}' changed state: "
            f"{old_state.name if old_state else None} -> {new_state.name}"
        )

    def failure(self, cb, exc):
        circuit_breaker_failures_total.labels(service=cb.name).inc()


aggregator_breaker = CircuitBreaker(
    fail_max=DEFAULT_FAIL_MAX,
    reset_timeout=DEFAULT_RESET_TIMEOUT,
    exclude=[_is_client_error],
    listeners=[MetricsListener()],
    name="aggregator",
)


def get_breaker_state(breaker: CircuitBreaker = aggregator_breaker) -> str:
    """Current state: 'closed', 'open' or 'half-open'."""
    return breaker.current_state


def reset_breaker(breaker: CircuitBreaker = aggregator_breaker) -> None:
    """
    Manually reset a circuit breaker to closed state.

    Use with caution - only reset if you know the service has recovered.
    """
    breaker.close()
    logger.warning(f"Circuit breaker '{breaker.name}' manually reset to CLOSED state")
