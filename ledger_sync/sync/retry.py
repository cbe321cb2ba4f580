"""
Bounded exponential-backoff retry for remote operations.

Only transient failures (network errors, timeouts, 5xx, 429) are retried.
A malformed request fails on the first attempt: retrying it would only
burn the workspace's rate-limit budget.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import TypeVar

from loguru import logger

from config import get_settings
from ledger_sync.sync.errors import RateLimited, RetryExhausted, is_retryable

T = TypeVar("T")


class RetryExecutor:
    """Run a callable, retrying transient failures with exponential backoff."""

    def __init__(
        self,
        max_attempts: int | None = None,
        base_delay_ms: int | None = None,
        jitter: bool | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = get_settings()
        self.max_attempts = max_attempts or settings.notion_retry_attempts
        self.base_delay_ms = (
            base_delay_ms if base_delay_ms is not None else settings.notion_retry_base_delay_ms
        )
        self.jitter = settings.notion_retry_jitter if jitter is None else jitter
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before attempt number `attempt` (1-based, attempt >= 2)."""
        delay_ms = self.base_delay_ms * (2 ** (attempt - 2))
        if self.jitter:
            delay_ms += random.uniform(0, delay_ms * 0.1)
        return delay_ms / 1000.0

    def run(
        self,
        op: Callable[[], T],
        description: str = "remote operation",
        max_attempts: int | None = None,
        base_delay_ms: int | None = None,
    ) -> T:
        """
        Execute `op` with retry.

        Args:
            op: Zero-argument callable performing the remote call
            description: Label used in log lines
            max_attempts: Override the executor's attempt budget
            base_delay_ms: Override the executor's base delay

        Returns:
            Whatever `op` returns

        Raises:
            RetryExhausted: If every attempt failed with a retryable error
            Exception: Any non-retryable error, on first occurrence
        """
        attempts = max_attempts or self.max_attempts
        executor = self
        if base_delay_ms is not None:
            executor = RetryExecutor(attempts, base_delay_ms, self.jitter, self._sleep)

        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                wait = executor.delay_for(attempt)
                if isinstance(last_error, RateLimited) and last_error.retry_after:
                    wait = max(wait, last_error.retry_after)
                logger.debug(f"Waiting {wait:.2f}s before attempt {attempt}/{attempts} of {description}")
                self._sleep(wait)

            try:
                return op()
            except Exception as e:
                if not is_retryable(e):
                    raise
                last_error = e
                logger.warning(f"{description} failed on attempt {attempt}/{attempts}: {e}")

        logger.error(f"{description} failed after {attempts} attempts: {last_error}")
        raise RetryExhausted(last_error, attempts)
