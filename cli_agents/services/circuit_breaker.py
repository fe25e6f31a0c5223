"""Circuit breaker guarding calls to a provider CLI."""

import logging
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from cli_agents.exceptions import (
    CircuitOpenError,
    CliTimeoutError,
    NonZeroExitError,
    ParseError,
    ProcessSpawnError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that say something about the health of the CLI itself
TRANSPORT_FAILURES: Tuple[Type[BaseException], ...] = (
    ProcessSpawnError,
    CliTimeoutError,
    NonZeroExitError,
    ParseError,
)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfig(BaseModel):
    """Thresholds for a breaker. Use the named presets for the common cases."""

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=30.0, gt=0, description="Seconds OPEN before a trial call")
    sliding_window: float = Field(default=120.0, gt=0, description="Seconds after which counts halve")

    @classmethod
    def default(cls) -> "CircuitBreakerConfig":
        return cls(failure_threshold=5, recovery_timeout=30.0, sliding_window=120.0)

    @classmethod
    def sensitive(cls) -> "CircuitBreakerConfig":
        """Opens quickly and stays open longer."""
        return cls(failure_threshold=3, recovery_timeout=60.0, sliding_window=60.0)

    @classmethod
    def tolerant(cls) -> "CircuitBreakerConfig":
        """Absorbs bursts of failures and recovers quickly."""
        return cls(failure_threshold=10, recovery_timeout=15.0, sliding_window=300.0)

    @classmethod
    def preset(cls, name: str) -> "CircuitBreakerConfig":
        factories = {"default": cls.default, "sensitive": cls.sensitive, "tolerant": cls.tolerant}
        try:
            return factories[name.strip().lower()]()
        except KeyError:
            raise ValueError(f"Unknown circuit breaker preset: {name}") from None


class CircuitMetrics(BaseModel):
    """Point-in-time snapshot of a breaker."""

    name: str
    state: CircuitState
    failures: int
    successes: int
    failure_rate: float
    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None

    @property
    def is_healthy(self) -> bool:
        return self.state == CircuitState.CLOSED and self.failure_rate < 0.5


class CircuitBreaker:
    """
    CLOSED / OPEN / HALF_OPEN breaker with a decaying failure window.

    When the sliding window elapses the failure and success counts are halved
    rather than cleared. While OPEN every call fails with CircuitOpenError
    without being attempted; after ``recovery_timeout`` one trial call is let
    through. All state changes happen under a lock that is never held across
    an await.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        counted_exceptions: Tuple[Type[BaseException], ...] = TRANSPORT_FAILURES,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig.default()
        self.counted_exceptions = counted_exceptions
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._window_start = clock()
        self._last_failure = 0.0
        self._trial_in_flight = False
        self._last_failure_at: Optional[datetime] = None
        self._last_success_at: Optional[datetime] = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._advance(self._clock())
            return self._state

    def _advance(self, now: float) -> None:
        """Apply window decay and the OPEN -> HALF_OPEN timer. Caller holds the lock."""
        elapsed_windows = int((now - self._window_start) // self.config.sliding_window)
        if elapsed_windows > 0:
            shift = min(elapsed_windows, 32)
            self._failures >>= shift
            self._successes >>= shift
            self._window_start += elapsed_windows * self.config.sliding_window

        if (
            self._state == CircuitState.OPEN
            and now - self._last_failure >= self.config.recovery_timeout
        ):
            logger.info(f"Circuit '{self.name}' half-open; allowing a trial call")
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False

    def acquire(self) -> bool:
        """
        Claim permission for one call.

        Returns:
            True when the call is the HALF_OPEN trial

        Raises:
            CircuitOpenError: The breaker is OPEN, or HALF_OPEN with its trial in flight
        """
        with self._lock:
            now = self._clock()
            self._advance(now)
            if self._state == CircuitState.CLOSED:
                return False
            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            retry_after = max(0.0, self.config.recovery_timeout - (now - self._last_failure))
        raise CircuitOpenError(self.name, retry_after)

    def record_success(self) -> None:
        with self._lock:
            self._advance(self._clock())
            self._successes += 1
            self._last_success_at = datetime.now(timezone.utc)
            if self._state == CircuitState.HALF_OPEN:
                logger.info(f"Circuit '{self.name}' closed after successful trial")
                self._state = CircuitState.CLOSED
                self._failures = 0
                self._trial_in_flight = False
                self._window_start = self._clock()

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._advance(now)
            self._failures += 1
            self._last_failure = now
            self._last_failure_at = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit '{self.name}' trial call failed; reopening")
                self._state = CircuitState.OPEN
                self._trial_in_flight = False
            elif self._state == CircuitState.CLOSED and self._failures >= self.config.failure_threshold:
                logger.warning(
                    f"Circuit '{self.name}' opened after {self._failures} failures "
                    f"within {self.config.sliding_window:g}s"
                )
                self._state = CircuitState.OPEN

    def release(self) -> None:
        """Give back a HALF_OPEN trial slot for a call that ended without a verdict."""
        with self._lock:
            self._trial_in_flight = False

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Run ``func`` under the breaker.

        Counted failures are recorded and re-raised; other exceptions pass
        through without changing the counts.
        """
        trial = self.acquire()
        try:
            result = await func(*args, **kwargs)
        except self.counted_exceptions:
            self.record_failure()
            raise
        except BaseException:
            if trial:
                self.release()
            raise
        self.record_success()
        return result

    def metrics(self) -> CircuitMetrics:
        with self._lock:
            self._advance(self._clock())
            total = self._failures + self._successes
            return CircuitMetrics(
                name=self.name,
                state=self._state,
                failures=self._failures,
                successes=self._successes,
                failure_rate=self._failures / total if total else 0.0,
                last_failure_at=self._last_failure_at,
                last_success_at=self._last_success_at,
            )

    def reset(self) -> None:
        with self._lock:
            logger.info(f"Circuit '{self.name}' manually reset")
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._successes = 0
            self._trial_in_flight = False
            self._window_start = self._clock()
