"""Circuit breaker state machine as pure functions.

The in-process backend applies these directly; the Lua scripts in
``redis_lua`` implement the same transitions server-side.
"""

from .models import AcquireResult, CircuitBreakerConfig, CircuitSnapshot, CircuitState


def acquire(snapshot: CircuitSnapshot, now: int, config: CircuitBreakerConfig) -> AcquireResult:
    """Decide whether a call may proceed."""
    if snapshot.state == CircuitState.CLOSED:
        return AcquireResult(allowed=True, trial=False, snapshot=snapshot)

    if snapshot.state == CircuitState.OPEN:
        elapsed = now - snapshot.last_failure_time
        if elapsed < config.reset_timeout_ms:
            return AcquireResult(
                allowed=False,
                trial=False,
                snapshot=snapshot,
                retry_after_ms=config.reset_timeout_ms - elapsed,
            )
        trialling = snapshot.evolve(
            state=CircuitState.HALF_OPEN, success_count=0, half_open_in_flight=1
        )
        return AcquireResult(allowed=True, trial=True, snapshot=trialling)

    # HALF_OPEN: only a bounded number of trial calls in flight
    if snapshot.half_open_in_flight < config.half_open_attempts:
        trialling = snapshot.evolve(half_open_in_flight=snapshot.half_open_in_flight + 1)
        return AcquireResult(allowed=True, trial=True, snapshot=trialling)
    return AcquireResult(allowed=False, trial=False, snapshot=snapshot)


def record_success(snapshot: CircuitSnapshot, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
    successes = snapshot.success_count + 1

    if snapshot.state == CircuitState.HALF_OPEN:
        in_flight = snapshot.half_open_in_flight
        if trial:
            in_flight = max(0, in_flight - 1)
        if successes >= config.half_open_attempts:
            return snapshot.evolve(
                state=CircuitState.CLOSED,
                failure_count=0,
                success_count=successes,
                half_open_in_flight=0,
            )
        return snapshot.evolve(success_count=successes, half_open_in_flight=in_flight)

    if snapshot.state == CircuitState.CLOSED:
        # Failures must be consecutive to open the circuit.
        return snapshot.evolve(success_count=successes, failure_count=0)

    # A call admitted before the circuit opened finished late.
    return snapshot.evolve(success_count=successes)


def record_failure(
    snapshot: CircuitSnapshot, trial: bool, now: int, config: CircuitBreakerConfig
) -> CircuitSnapshot:
    """Apply a counted (retryable) failure."""
    failures = snapshot.failure_count + 1
    should_open = (
        snapshot.state == CircuitState.HALF_OPEN
        or failures >= config.failure_threshold
    )
    if should_open:
        return snapshot.evolve(
            state=CircuitState.OPEN,
            failure_count=failures,
            success_count=0,
            last_failure_time=now,
            half_open_in_flight=0,
        )
    return snapshot.evolve(failure_count=failures, last_failure_time=now)


def release(snapshot: CircuitSnapshot, trial: bool) -> CircuitSnapshot:
    """Free a trial slot after an outcome that does not count."""
    if trial and snapshot.state == CircuitState.HALF_OPEN:
        return snapshot.evolve(half_open_in_flight=max(0, snapshot.half_open_in_flight - 1))
    return snapshot
