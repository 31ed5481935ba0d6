"""Tests for the retry/backoff policy."""

from datetime import timedelta

import pytest

from async_whatsapp_queue.retry import DEFAULT_MAX_ATTEMPTS, RetryStrategy


class TestRetryStrategy:
    def test_default_delays_double_and_cap(self):
        strategy = RetryStrategy()
        delays = [strategy.calculate_delay(n) for n in range(1, 9)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0]

    def test_attempts_below_one_use_base_delay(self):
        strategy = RetryStrategy(base_delay=0.5)
        assert strategy.calculate_delay(0) == 0.5
        assert strategy.calculate_delay(-3) == 0.5

    def test_huge_attempt_counts_are_capped(self):
        strategy = RetryStrategy(max_delay=45.0)
        assert strategy.calculate_delay(10_000) == 45.0

    def test_backoff_as_timedelta(self):
        assert RetryStrategy().backoff(3) == timedelta(seconds=4)

    def test_zero_base_delay_retries_immediately(self):
        assert RetryStrategy(base_delay=0.0).calculate_delay(5) == 0.0

    def test_negative_delays_rejected(self):
        with pytest.raises(ValueError):
            RetryStrategy(base_delay=-1)
        with pytest.raises(ValueError):
            RetryStrategy(max_delay=-1)

    @pytest.mark.parametrize(
        "attempts,max_attempts,expected",
        [(1, 3, True), (2, 3, True), (3, 3, False), (1, 1, False)],
    )
    def test_should_retry(self, attempts, max_attempts, expected):
        assert RetryStrategy.should_retry(attempts, max_attempts) is expected

    def test_default_budget(self):
        assert DEFAULT_MAX_ATTEMPTS == 3
