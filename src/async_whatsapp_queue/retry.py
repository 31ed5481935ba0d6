# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Retry and backoff policy for failed delivery attempts.

A failed attempt is retried while the message still has budget left
(``attempts < max_attempts``). The wait before the next attempt doubles
each time and is capped::

    delay = min(base_delay * 2 ** (attempts - 1), max_delay)

With the defaults this gives 1s, 2s, 4s, 8s, 16s, 30s, 30s, ...

Example:
    Planning the next attempt::

        strategy = RetryStrategy()
        if strategy.should_retry(message.attempts, message.max_attempts):
            message.next_attempt_at = now + strategy.backoff(message.attempts)
"""

from __future__ import annotations

from datetime import timedelta

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0


class RetryStrategy:
    """Exponential backoff with a ceiling.

    Attributes:
        base_delay: Delay in seconds after the first failed attempt.
        max_delay: Upper bound in seconds for any delay.
    """

    def __init__(self, base_delay: float = DEFAULT_BASE_DELAY, max_delay: float = DEFAULT_MAX_DELAY):
        if base_delay < 0 or max_delay < 0:
            raise ValueError("retry delays must be non-negative")
        self.base_delay = float(base_delay)
        self.max_delay = float(max_delay)

    def calculate_delay(self, attempts: int) -> float:
        """Seconds to wait after the ``attempts``-th failed attempt.

        Args:
            attempts: Attempts made so far, including the one that just failed.
                Values below 1 are treated as 1.

        Returns:
            Delay in seconds.
        """
        exponent = max(1, int(attempts)) - 1
        # 2 ** exponent overflows float math long before it matters.
        if exponent >= 64:
            return self.max_delay
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    def backoff(self, attempts: int) -> timedelta:
        return timedelta(seconds=self.calculate_delay(attempts))

    @staticmethod
    def should_retry(attempts: int, max_attempts: int) -> bool:
        """Whether another automatic attempt is allowed."""
        return attempts < max_attempts
