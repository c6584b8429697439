"""Circuit breaker around upstream calls.

Tracks failures of named operations and rejects calls quickly while an
operation is failing:

- CLOSED: calls pass; consecutive counted failures open the circuit
- OPEN: calls are rejected until the reset timeout elapses
- HALF_OPEN: a bounded number of trial calls pass; enough successes close the
  circuit, any counted failure reopens it

Only failures that look like upstream outages are counted (retryable status
codes and timeouts). Client errors and errors without a status code pass
through without touching the failure count.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import httpx

from captiongate.app.core.logging import get_log_context, get_logger
from captiongate.app.core.utils import now_ms
from captiongate.app.exceptions import (
    CircuitOpenError,
    InvalidUpstreamResponseError,
    UpstreamTimeoutError,
    get_status_code,
)

from .backends import CircuitBackend, InMemoryCircuitBackend
from .models import CircuitBreakerConfig, CircuitBreakerStats, CircuitSnapshot, CircuitState

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """Guards named operations with a shared state machine.

    Example:
        breaker = CircuitBreaker(backend)
        result = await breaker.with_circuit_breaker("openai.generate", call)
    """

    def __init__(
        self,
        backend: Optional[CircuitBackend] = None,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.backend = backend or InMemoryCircuitBackend()
        self.config = config or CircuitBreakerConfig.from_settings()
        self._clock = clock

    def is_counted_failure(self, error: BaseException) -> bool:
        """Whether an error counts toward opening the circuit."""
        if isinstance(error, InvalidUpstreamResponseError):
            # The upstream answered; the payload was unusable.
            return False
        status = get_status_code(error)
        return status is not None and status in self.config.retryable_status_codes

    async def with_circuit_breaker(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """Run ``fn`` under the breaker for ``operation``.

        Args:
            operation: Name of the guarded operation
            fn: Zero-argument coroutine function performing the call
            timeout: Time budget in seconds; defaults to the config's

        Raises:
            CircuitOpenError: The circuit rejected the call; ``fn`` was not run
            UpstreamTimeoutError: ``fn`` exceeded its time budget or hit an
                HTTP transport timeout
            Exception: Whatever ``fn`` raised, unchanged
        """
        ticket = await self.backend.acquire(operation, self._clock(), self.config)
        if not ticket.allowed:
            logger.info(
                f"Circuit open, rejecting call to {operation}",
                extra=get_log_context(operation=operation, retry_after_ms=ticket.retry_after_ms),
            )
            raise CircuitOpenError(operation, ticket.retry_after_ms)

        if ticket.trial and ticket.snapshot.half_open_in_flight == 1:
            logger.info(
                f"Circuit half-open for {operation}, letting trial calls through",
                extra=get_log_context(operation=operation),
            )

        budget = timeout if timeout is not None else self.config.call_timeout_seconds
        try:
            if budget is None:
                result = await fn()
            else:
                result = await asyncio.wait_for(fn(), timeout=budget)
        except asyncio.TimeoutError:
            timeout_error = UpstreamTimeoutError(operation, budget)
            await self._on_failure(operation, ticket.trial, timeout_error)
            raise timeout_error from None
        except httpx.TimeoutException as e:
            # Transport timeouts (connect, pool, read) fire inside the budget.
            timeout_error = UpstreamTimeoutError(operation)
            await self._on_failure(operation, ticket.trial, timeout_error)
            raise timeout_error from e
        except asyncio.CancelledError:
            await self.backend.release(operation, ticket.trial, self.config)
            raise
        except Exception as e:
            if self.is_counted_failure(e):
                await self._on_failure(operation, ticket.trial, e)
            else:
                await self.backend.release(operation, ticket.trial, self.config)
            raise

        await self._on_success(operation, ticket.trial, ticket.snapshot)
        return result

    async def _on_success(self, operation: str, trial: bool, before: CircuitSnapshot) -> None:
        after = await self.backend.record_success(operation, trial, self.config)
        if before.state == CircuitState.HALF_OPEN and after.state == CircuitState.CLOSED:
            logger.info(
                f"Circuit closed for {operation} after successful trial calls",
                extra=get_log_context(operation=operation),
            )

    async def _on_failure(self, operation: str, trial: bool, error: BaseException) -> None:
        after = await self.backend.record_failure(operation, trial, self._clock(), self.config)
        if after.state != CircuitState.OPEN:
            logger.warning(
                f"Upstream failure on {operation} ({after.failure_count}/"
                f"{self.config.failure_threshold}): {error}",
                extra=get_log_context(operation=operation),
            )
        elif trial:
            logger.warning(
                f"Trial call failed, circuit reopened for {operation}: {error}",
                extra=get_log_context(operation=operation),
            )
        else:
            logger.error(
                f"Circuit opened for {operation} after {after.failure_count} failures: {error}",
                extra=get_log_context(operation=operation),
            )

    async def get_stats(self, operation: str) -> CircuitBreakerStats:
        return CircuitBreakerStats.from_snapshot(await self.backend.get(operation))

    async def reset(self, operation: str) -> None:
        """Force an operation back to CLOSED with cleared counters."""
        await self.backend.reset(operation)
        logger.info(f"Circuit reset for {operation}", extra=get_log_context(operation=operation))

    async def reset_all(self) -> List[str]:
        """Reset every operation with stored state. Returns the names reset."""
        operations = await self.backend.operations()
        for operation in operations:
            await self.backend.reset(operation)
        if operations:
            logger.info(f"Reset {len(operations)} circuit(s): {', '.join(operations)}")
        return operations


async def with_circuit_breaker(
    breaker: CircuitBreaker,
    operation: str,
    fn: Callable[[], Awaitable[Any]],
    timeout: Optional[float] = None,
) -> Any:
    """Functional form of :meth:`CircuitBreaker.with_circuit_breaker`."""
    return await breaker.with_circuit_breaker(operation, fn, timeout)


async def get_circuit_breaker_stats(breaker: CircuitBreaker, operation: str) -> CircuitBreakerStats:
    return await breaker.get_stats(operation)


async def reset_circuit_breaker(breaker: CircuitBreaker, operation: str) -> None:
    await breaker.reset(operation)
