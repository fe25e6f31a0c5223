"""Retry with exponential backoff, layered above the circuit breaker."""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from cli_agents.exceptions import (
    CircuitOpenError,
    CliTimeoutError,
    DiscoveryError,
    InvalidArgumentError,
    NonZeroExitError,
    ProcessSpawnError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retrying these cannot change the outcome
NEVER_RETRIED: Tuple[Type[BaseException], ...] = (CircuitOpenError, InvalidArgumentError, DiscoveryError)


class RetryPolicy(BaseModel):
    """Backoff schedule: attempt n waits min(initial_delay * multiplier**(n-1), max_delay)."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=10.0, ge=0)
    retry_on: Tuple[Type[BaseException], ...] = (ProcessSpawnError, CliTimeoutError, NonZeroExitError)

    @classmethod
    def default_network(cls) -> "RetryPolicy":
        return cls(max_attempts=3, initial_delay=1.0, multiplier=2.0, max_delay=10.0)

    @classmethod
    def aggressive(cls) -> "RetryPolicy":
        return cls(max_attempts=5, initial_delay=0.5, multiplier=1.5, max_delay=5.0)

    @classmethod
    def conservative(cls) -> "RetryPolicy":
        return cls(max_attempts=2, initial_delay=2.0, multiplier=3.0, max_delay=30.0)

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1, initial_delay=0.0, multiplier=1.0, max_delay=0.0)

    @classmethod
    def preset(cls, name: str) -> "RetryPolicy":
        factories = {
            "default_network": cls.default_network,
            "aggressive": cls.aggressive,
            "conservative": cls.conservative,
            "no_retry": cls.no_retry,
        }
        try:
            return factories[name.strip().lower()]()
        except KeyError:
            raise ValueError(f"Unknown retry preset: {name}") from None

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def should_retry(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_on) and not isinstance(exc, NEVER_RETRIED)


async def with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str = "call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``func()`` until it succeeds, a non-retryable error is raised, or
    attempts run out. The last error is re-raised unchanged.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except Exception as e:
            if attempt >= policy.max_attempts or not policy.should_retry(e):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label} failed (attempt {attempt}/{policy.max_attempts}): {e}; retrying in {delay:.1f}s"
            )
            await sleep(delay)
            attempt += 1
