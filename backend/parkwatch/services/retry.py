"""
Bounded exponential-backoff retry for single API probes.

No jitter here: request pacing noise lives in the RateLimiter.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Attributes:
        max_attempts: Total number of calls, including the first one
        initial_delay_ms: Backoff before the second attempt
        max_delay_ms: Cap applied to every backoff step
        multiplier: Growth factor between consecutive backoffs
    """
    max_attempts: int = 3
    initial_delay_ms: int = 2000
    max_delay_ms: int = 10000
    multiplier: float = 2.0

    def get_backoff_delay(self, attempt: int) -> float:
        """
        Backoff in milliseconds after failed attempt number `attempt` (1-indexed):
        min(initial_delay_ms * multiplier ^ (attempt - 1), max_delay_ms)
        """
        return min(self.initial_delay_ms * (self.multiplier ** (attempt - 1)), self.max_delay_ms)


class RetryStrategy:
    """Calls an async operation until it succeeds or attempts run out."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        max_attempts: Optional[int] = None,
        initial_delay: Optional[int] = None,
        max_delay: Optional[int] = None,
        multiplier: Optional[float] = None,
    ) -> Any:
        """
        Run `operation` with retries. Per-call overrides take precedence over the config.

        Raises:
            Exception: the last error once every attempt has failed
        """
        config = replace(
            self.config,
            max_attempts=max_attempts if max_attempts is not None else self.config.max_attempts,
            initial_delay_ms=initial_delay if initial_delay is not None else self.config.initial_delay_ms,
            max_delay_ms=max_delay if max_delay is not None else self.config.max_delay_ms,
            multiplier=multiplier if multiplier is not None else self.config.multiplier,
        )
        if config.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_exception: Optional[Exception] = None
        for attempt in range(1, config.max_attempts + 1):
            try:
                logger.debug(f"Attempt {attempt}/{config.max_attempts}")
                return await operation()
            except Exception as e:
                last_exception = e
                logger.warning(
                    f"Attempt {attempt}/{config.max_attempts} failed: {type(e).__name__}: {e}"
                )

                if attempt < config.max_attempts:
                    delay_ms = config.get_backoff_delay(attempt)
                    logger.debug(f"Retrying in {delay_ms:.0f}ms...")
                    await self._sleep(delay_ms / 1000)

        logger.error(f"All {config.max_attempts} attempts failed")
        raise last_exception
