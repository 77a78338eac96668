"""Bounded retry policy for transient cluster failures."""

import logging
import time
from collections.abc import Callable, Iterator
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field

from src.reconciler.errors import is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Exponential backoff capped at ``max_delay``, at most ``max_attempts`` tries.

    Anything still failing after the last attempt is left for the next
    reconcile pass, which the controller schedules with its requeue delay.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=5.0, ge=0)

    def delays(self) -> Iterator[float]:
        """Yield the sleep before each retry (one fewer than max_attempts)."""
        for attempt in range(self.max_attempts - 1):
            yield min(self.base_delay * (2**attempt), self.max_delay)

    def call(
        self,
        func: Callable[[], T],
        *,
        description: str,
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Run ``func``, retrying transient failures.

        Args:
            func: Zero-argument callable performing one attempt.
            description: What is being attempted, for log messages.
            sleep: Sleep function (injected in tests).

        Returns:
            The result of the first successful attempt.

        Raises:
            The last exception once attempts are exhausted, or immediately
            for non-transient failures.
        """
        delays = self.delays()
        while True:
            try:
                return func()
            except Exception as e:
                if not is_transient(e):
                    raise
                delay = next(delays, None)
                if delay is None:
                    logger.warning(
                        "Giving up on %s after %d attempts: %s",
                        description,
                        self.max_attempts,
                        e,
                    )
                    raise
                logger.info("Retrying %s in %.2fs: %s", description, delay, e)
                sleep(delay)
