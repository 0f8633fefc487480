"""Tests for the retry policy."""

import asyncio

import pytest

from utils.errors import ExternalServiceError
from utils.retry import RetryPolicy, is_retryable_error


class TestRetryPolicy:
    """Bounded retries with exponential backoff."""

    def setup_method(self):
        """Set up test fixtures."""
        self.delays = []

        async def fake_sleep(delay):
            self.delays.append(delay)

        self.policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0, sleep=fake_sleep)

    def _flaky(self, failures, error):
        state = {"calls": 0}

        async def call():
            state["calls"] += 1
            if state["calls"] <= failures:
                raise error
            return "ok"

        return call, state

    def test_succeeds_after_retryable_failures(self):
        call, state = self._flaky(2, ExternalServiceError("llm", "rate limit", retryable=True))
        assert asyncio.run(self.policy.run(call)) == "ok"
        assert state["calls"] == 3
        assert self.delays == [1.0, 2.0]

    def test_exhaustion_reraises_last_error(self):
        error = ExternalServiceError("embeddings", "timeout", retryable=True)
        call, state = self._flaky(5, error)
        with pytest.raises(ExternalServiceError) as exc:
            asyncio.run(self.policy.run(call))
        assert exc.value is error
        assert state["calls"] == 3

    def test_non_retryable_error_is_immediate(self):
        call, state = self._flaky(1, ExternalServiceError("market_data", "status 404", retryable=False))
        with pytest.raises(ExternalServiceError):
            asyncio.run(self.policy.run(call))
        assert state["calls"] == 1
        assert self.delays == []

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_delay=4.0, max_delay=10.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [4.0, 8.0, 10.0, 10.0]

    def test_custom_classifier(self):
        policy = RetryPolicy(max_attempts=2, is_retryable=lambda e: isinstance(e, KeyError), sleep=self._noop)
        call, state = self._flaky(1, KeyError("x"))
        assert asyncio.run(policy.run(call)) == "ok"
        assert state["calls"] == 2

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    @staticmethod
    async def _noop(delay):
        return None


class TestRetryableClassifier:
    """Default classification of errors."""

    def test_rate_limit_and_timeouts(self):
        assert is_retryable_error(Exception("Rate limit reached for requests"))
        assert is_retryable_error(Exception("Error 429: Too Many Requests"))
        assert is_retryable_error(asyncio.TimeoutError())
        assert is_retryable_error(ConnectionError("reset"))

    def test_other_errors(self):
        assert not is_retryable_error(ValueError("bad input"))
        assert not is_retryable_error(ExternalServiceError("llm", "timeout", retryable=False))
