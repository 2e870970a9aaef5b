"""
Throttle: rate limiter, retrier and circuit breaker for outbound calls

Every call the core makes to an external dependency (swap quotes, swap
submission, portfolio refresh) goes through one named dependency here.

Per dependency:
- Minimum spacing between accepted calls, scaled by 2^min(errors, cap)
  while the dependency is failing
- At most `max_calls` accepted calls in any rolling `window_seconds`
- Circuit breaker: after `failure_threshold` consecutive failures no call is
  attempted until `base_cooldown * 2^min(extra_errors, 3)` has elapsed

Throttling never raises; callers are suspended instead. with_retry() retries
rate-limit errors with exponential backoff and jitter, gives generic I/O
failures one extra short-delay attempt, and fails fast on everything else.

Usage:
    throttle = Throttle({"swap": ThrottlePolicy(min_delay_seconds=1.0)})
    quote = throttle.with_retry(lambda: client.quote(...), dependency="swap")
"""
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Callable, Deque, Dict, Optional, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")
MAX_CIRCUIT_EXPONENT = 3


@dataclass(frozen=True)
class ThrottlePolicy:
    """Limits for one named dependency."""
    min_delay_seconds: float = 0.1
    max_calls: int = 10
    window_seconds: float = 1.0
    base_cooldown_seconds: float = 30.0
    failure_threshold: int = 3
    max_backoff_exponent: int = 4  # cap on the min-delay scaling exponent


@dataclass
class DependencyState:
    """Mutable throttle state for one dependency. Guarded by its own lock."""
    name: str
    policy: ThrottlePolicy
    lock: Lock = field(default_factory=Lock, repr=False)
    calls: Deque[float] = field(default_factory=deque)
    last_call: Optional[float] = None
    consecutive_errors: int = 0
    circuit_open_until: float = 0.0
    # Stats
    total_calls: int = 0
    throttled_calls: int = 0
    total_wait_seconds: float = 0.0
    max_wait_seconds: float = 0.0
    circuit_opens: int = 0

    @property
    def window_start(self) -> Optional[float]:
        return self.calls[0] if self.calls else None

    def prune(self, now: float) -> None:
        """Drop accepted calls that left the rolling window."""
        while self.calls and self.calls[0] + self.policy.window_seconds <= now:
            self.calls.popleft()

    def effective_min_delay(self) -> float:
        exponent = min(self.consecutive_errors, self.policy.max_backoff_exponent)
        return self.policy.min_delay_seconds * (2 ** exponent)

    def wait_time(self, now: float) -> float:
        """Seconds until one more call may be accepted (0 if allowed now)."""
        self.prune(now)

        if now < self.circuit_open_until:
            return self.circuit_open_until - now

        wait = 0.0
        if self.last_call is not None:
            wait = max(wait, self.last_call + self.effective_min_delay() - now)
        if len(self.calls) >= self.policy.max_calls:
            wait = max(wait, self.calls[0] + self.policy.window_seconds - now)
        return max(wait, 0.0)

    def accept(self, now: float) -> None:
        self.calls.append(now)
        self.last_call = now
        self.total_calls += 1


def is_rate_limit_error(exc: BaseException) -> bool:
    """True for HTTP 429 or provider messages that signal rate limiting."""
    status = getattr(exc, "status_code", None)
    if status is None and isinstance(exc, requests.exceptions.HTTPError) and exc.response is not None:
        status = exc.response.status_code
    if status == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_io_error(exc: BaseException) -> bool:
    """True for network failures and upstream 5xx responses."""
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, requests.exceptions.HTTPError) and exc.response is not None:
        return exc.response.status_code >= 500
    return False


def backoff_delay(attempt: int, base_delay: float, max_delay: float = 30.0, jitter_pct: float = 0.1) -> float:
    """
    Exponential backoff with jitter.

    delay = base * 2^attempt, plus up to `jitter_pct` of that, capped at max_delay.
    """
    delay = base_delay * (2 ** attempt)
    delay += random.uniform(0, delay * jitter_pct)
    return min(delay, max_delay)


class Throttle:
    """
    Per-dependency throttle shared by every component that talks to the
    outside world.

    State for a dependency is serialized by that dependency's lock; waits
    happen outside the lock so other dependencies are never blocked.
    """

    def __init__(
        self,
        policies: Optional[Dict[str, ThrottlePolicy]] = None,
        default_policy: Optional[ThrottlePolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        metrics: Any = None,
    ):
        """
        Initialize throttle.

        Args:
            policies: Policy per dependency name
            default_policy: Used for names without an explicit policy
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function (injectable for tests)
            metrics: Optional MetricsRecorder
        """
        self._default_policy = default_policy or ThrottlePolicy()
        self._clock = clock
        self._sleep = sleep
        self._metrics = metrics
        self._states: Dict[str, DependencyState] = {}
        self._registry_lock = Lock()

        for name, policy in (policies or {}).items():
            self._states[name] = DependencyState(name=name, policy=policy)

        logger.info(f"Initialized Throttle for dependencies: {sorted(self._states) or ['<default>']}")

    def _state(self, name: str) -> DependencyState:
        with self._registry_lock:
            state = self._states.get(name)
            if state is None:
                state = DependencyState(name=name, policy=self._default_policy)
                self._states[name] = state
            return state

    def acquire(self, name: str) -> float:
        """
        Block until one call to `name` may be issued, then claim the slot.

        Must be invoked immediately before each outbound request.

        Returns:
            Total seconds waited
        """
        state = self._state(name)
        waited = 0.0

        while True:
            with state.lock:
                now = self._clock()
                wait = state.wait_time(now)
                if wait <= 0:
                    state.accept(now)
                    if waited > 0:
                        state.throttled_calls += 1
                        state.total_wait_seconds += waited
                        state.max_wait_seconds = max(state.max_wait_seconds, waited)
                    break
                circuit_open = now < state.circuit_open_until

            if circuit_open:
                logger.warning(f"Throttle {name}: circuit open, waiting {wait:.1f}s")
            elif wait > 1.0:
                logger.warning(f"Throttle {name}: waiting {wait:.2f}s")
            elif wait > 0.1:
                logger.info(f"Throttle {name}: pause {wait:.3f}s")
            else:
                logger.debug(f"Throttle {name}: pause {wait:.3f}s")

            # Sleep outside the lock; re-check afterwards since another caller
            # may have claimed the slot meanwhile
            self._sleep(wait)
            waited += wait

        if waited > 0 and self._metrics is not None:
            self._metrics.record_throttle_wait(name, waited)
        return waited

    def try_acquire(self, name: str) -> bool:
        """Claim a slot only if one is available right now."""
        state = self._state(name)
        with state.lock:
            now = self._clock()
            if state.wait_time(now) > 0:
                return False
            state.accept(now)
            return True

    def is_circuit_open(self, name: str) -> bool:
        state = self._state(name)
        with state.lock:
            return self._clock() < state.circuit_open_until

    def record_success(self, name: str) -> None:
        """Decay the consecutive-error counter by one step toward zero."""
        state = self._state(name)
        with state.lock:
            if state.consecutive_errors > 0:
                state.consecutive_errors -= 1
                logger.debug(f"Throttle {name}: success, errors now {state.consecutive_errors}")

    def record_failure(self, name: str) -> None:
        """Count a failure; open the circuit once the threshold is reached."""
        state = self._state(name)
        opened_for = None
        with state.lock:
            state.consecutive_errors += 1
            threshold = state.policy.failure_threshold
            if state.consecutive_errors >= threshold:
                extra = state.consecutive_errors - threshold
                opened_for = state.policy.base_cooldown_seconds * (2 ** min(extra, MAX_CIRCUIT_EXPONENT))
                state.circuit_open_until = self._clock() + opened_for
                state.circuit_opens += 1
            errors = state.consecutive_errors

        if opened_for is not None:
            reopen_at = datetime.now(timezone.utc) + timedelta(seconds=opened_for)
            logger.warning(
                f"Throttle {name}: circuit open after {errors} consecutive errors, "
                f"reopens at {reopen_at.strftime('%H:%M:%S')} UTC ({opened_for:.0f}s)"
            )
            if self._metrics is not None:
                self._metrics.record_circuit_open(name)
        else:
            logger.debug(f"Throttle {name}: failure recorded ({errors} consecutive)")

    def with_retry(
        self,
        operation: Callable[[], T],
        dependency: Optional[str] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        retry_io_errors: bool = True,
    ) -> T:
        """
        Run `operation`, retrying rate-limit errors with exponential backoff.

        Args:
            operation: Zero-argument callable issuing exactly one outbound call
            dependency: If set, acquire() before each attempt and record the outcome
            max_attempts: Attempts allowed for rate-limit errors
            base_delay: First backoff delay in seconds
            max_delay: Backoff ceiling in seconds
            retry_io_errors: Allow one extra short-delay attempt for I/O failures

        Returns:
            The operation's result

        Raises:
            The operation's final exception once retries are exhausted, or
            immediately for errors that are neither rate limits nor I/O failures
        """
        attempt = 0
        io_retry_used = False

        while True:
            if dependency:
                self.acquire(dependency)
            try:
                result = operation()
            except Exception as e:
                rate_limited = is_rate_limit_error(e)
                io_failure = not rate_limited and is_io_error(e)
                if dependency and (rate_limited or io_failure):
                    self.record_failure(dependency)

                if rate_limited:
                    attempt += 1
                    if attempt >= max_attempts:
                        logger.error(f"Rate limited by {dependency or 'operation'}, giving up after {attempt} attempts")
                        raise
                    delay = backoff_delay(attempt - 1, base_delay, max_delay)
                    retry_after = getattr(e, "retry_after", None)
                    if retry_after:
                        delay = min(max(delay, float(retry_after)), max_delay)
                    logger.warning(
                        f"Rate limited by {dependency or 'operation'}, retry {attempt}/{max_attempts - 1} in {delay:.2f}s"
                    )
                    self._sleep(delay)
                    continue

                if io_failure and retry_io_errors and not io_retry_used:
                    io_retry_used = True
                    delay = min(base_delay, max_delay)
                    logger.warning(f"I/O error from {dependency or 'operation'}: {e}; retrying once in {delay:.2f}s")
                    self._sleep(delay)
                    continue

                raise

            if dependency:
                self.record_success(dependency)
            return result

    def get_stats(self, name: str) -> Dict[str, Any]:
        """Snapshot of one dependency's throttle state and counters."""
        state = self._state(name)
        with state.lock:
            now = self._clock()
            state.prune(now)
            return {
                "dependency": name,
                "calls_in_window": len(state.calls),
                "window_start": state.window_start,
                "last_call": state.last_call,
                "consecutive_errors": state.consecutive_errors,
                "effective_min_delay": state.effective_min_delay(),
                "circuit_open": now < state.circuit_open_until,
                "circuit_open_for": max(0.0, state.circuit_open_until - now),
                "circuit_opens": state.circuit_opens,
                "total_calls": state.total_calls,
                "throttled_calls": state.throttled_calls,
                "total_wait_seconds": state.total_wait_seconds,
                "max_wait_seconds": state.max_wait_seconds,
            }

    def dependencies(self):
        with self._registry_lock:
            return sorted(self._states)
