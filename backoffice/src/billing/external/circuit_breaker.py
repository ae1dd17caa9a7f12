"""
Gateway Circuit Breaker

Implements the circuit breaker pattern for payment gateway calls to prevent
cascading failures when a gateway is experiencing issues.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Gateway is failing, block requests to prevent overload
- HALF_OPEN: Testing if the gateway has recovered

State is held per process.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

from backoffice.core.conf import settings
from backoffice.src.billing.shared.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Testing recovery


class GatewayCircuitBreaker:
    """
    Circuit breaker for payment gateway calls.

    Usage:
        breaker = GatewayCircuitBreaker("stripe_api", expected_exceptions=(stripe.StripeError,))
        result = await breaker.safe_call(stripe.Customer.create_async, email="...")
    """

    def __init__(
        self,
        circuit_name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the circuit breaker.

        Args:
            circuit_name: Unique name for this circuit
            failure_threshold: Number of consecutive failures before opening the circuit
            recovery_timeout: Seconds to wait before testing recovery
            expected_exceptions: Exception types counted as gateway failures
            clock: Monotonic time source
        """
        self.circuit_name = circuit_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions
        self._clock = clock
        self._lock = asyncio.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.last_error: Optional[str] = None

    async def safe_call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a gateway call with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: The circuit is open
            Exception: Whatever the gateway call raised
        """
        async with self._lock:
            if not self._should_allow_request():
                retry_after = self._retry_after()
                logger.warning(f"[CIRCUIT BREAKER] {self.circuit_name} request blocked - circuit is {self.state.value}")
                raise CircuitBreakerOpenError(self.circuit_name, retry_after=retry_after)

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions as e:
            async with self._lock:
                self._record_failure(str(e))
            raise

        async with self._lock:
            self._record_success()
        return result

    def get_status(self) -> Dict:
        return {
            'circuit_name': self.circuit_name,
            'state': self.state.value,
            'failure_count': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'recovery_timeout': self.recovery_timeout,
            'last_error': self.last_error,
        }

    def _should_allow_request(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            if self.opened_at is not None and self._clock() - self.opened_at >= self.recovery_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info(f"[CIRCUIT BREAKER] {self.circuit_name} half-open, testing recovery")
                return True
            return False
        # HALF_OPEN
        return True

    def _retry_after(self) -> Optional[int]:
        if self.opened_at is None:
            return None
        return max(0, int(self.recovery_timeout - (self._clock() - self.opened_at)))

    def _record_success(self) -> None:
        if self.state != CircuitState.CLOSED:
            logger.info(f"[CIRCUIT BREAKER] {self.circuit_name} recovered, closing circuit")
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None
        self.last_error = None

    def _record_failure(self, error: str) -> None:
        self.failure_count += 1
        self.last_error = error

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
            self.opened_at = self._clock()
            logger.error(
                f"[CIRCUIT BREAKER] {self.circuit_name} opened after {self.failure_count} failures: {error}"
            )
        else:
            logger.warning(
                f"[CIRCUIT BREAKER] {self.circuit_name} failure {self.failure_count}/{self.failure_threshold}: {error}"
            )


def build_breaker(circuit_name: str, expected_exceptions: Tuple[Type[BaseException], ...]) -> GatewayCircuitBreaker:
    return GatewayCircuitBreaker(
        circuit_name,
        failure_threshold=settings.GATEWAY_CIRCUIT_FAILURE_THRESHOLD,
        recovery_timeout=settings.GATEWAY_CIRCUIT_RECOVERY_SECONDS,
        expected_exceptions=expected_exceptions,
    )
