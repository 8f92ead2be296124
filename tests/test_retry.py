"""
Tests for retry logic.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from jobinfo.retry import (
    exponential_backoff,
    is_transient_error,
    RetryError,
)


class FakeDriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestExponentialBackoff:
    """Test exponential backoff decorator."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.1)
        def succeeds():
            call_count[0] += 1
            return "success"

        result = succeeds()
        assert result == "success"
        assert call_count[0] == 1

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01)
        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        result = fails_twice()
        assert result == "success"
        assert call_count[0] == 3

    def test_all_retries_exhausted(self):
        """Should raise RetryError after all attempts fail."""
        call_count = [0]

        @exponential_backoff(max_retries=2, base_delay=0.01)
        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError) as exc_info:
            always_fails()

        assert call_count[0] == 3  # Initial + 2 retries
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exceptions=(ConnectionError,)
        )
        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            raises_value_error()

        assert call_count[0] == 1

    def test_should_retry_predicate(self):
        """Caught exceptions rejected by should_retry are re-raised at once."""
        call_count = [0]

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            should_retry=lambda e: "transient" in str(e),
        )
        def permanent_failure():
            call_count[0] += 1
            raise RuntimeError("permanent")

        with pytest.raises(RuntimeError, match="permanent"):
            permanent_failure()

        assert call_count[0] == 1

    def test_exponential_delay(self):
        """Delay should increase exponentially."""
        delays = []

        def on_retry_callback(attempt, exception, delay):
            delays.append(delay)

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exponential_base=2.0,
            on_retry=on_retry_callback
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert len(delays) == 3
        assert delays[0] == 0.01
        assert delays[1] == 0.02
        assert delays[2] == 0.04

    def test_max_delay_cap(self):
        """Delay should not exceed max_delay."""
        delays = []

        def on_retry_callback(attempt, exception, delay):
            delays.append(delay)

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            max_delay=0.02,
            exponential_base=3.0,
            on_retry=on_retry_callback
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert all(d <= 0.02 for d in delays)


class TestTransientErrors:
    """Test classification of database errors."""

    def test_sqlite_locked_is_transient(self):
        err = OperationalError("DELETE FROM job_info", {}, Exception("database is locked"))
        assert is_transient_error(err)

    def test_serialization_failure_sqlstate_is_transient(self):
        err = OperationalError("INSERT", {}, FakeDriverError("conflict", sqlstate="40001"))
        assert is_transient_error(err)

    def test_deadlock_sqlstate_is_transient(self):
        assert is_transient_error(FakeDriverError("deadlock detected", sqlstate="40P01"))

    def test_restart_transaction_message_is_transient(self):
        err = OperationalError(
            "INSERT", {}, Exception("restart transaction: TransactionRetryWithProtoRefreshError")
        )
        assert is_transient_error(err)

    def test_integrity_error_is_not_transient(self):
        err = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
        assert not is_transient_error(err)

    def test_plain_value_error_is_not_transient(self):
        assert not is_transient_error(ValueError("bad input"))
