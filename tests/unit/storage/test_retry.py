"""Unit tests for the retry executor."""

import logging
from unittest.mock import patch

import pytest

from unistore.storage.retry import RetryPolicy, retry


class TransientError(Exception):
    pass


@pytest.fixture(autouse=True)
def mock_sleep():
    with patch("unistore.storage.retry.time.sleep") as sleep:
        yield sleep


class Flaky:
    """Callable failing a fixed number of times before returning a value."""

    def __init__(self, failures: int, result="ok"):
        self.failures = failures
        self.result = result
        self.calls = 0
        self.errors: list[Exception] = []

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            error = TransientError(f"failure {self.calls}")
            self.errors.append(error)
            raise error
        return self.result


class TestRetryBound:
    def test_always_failing_operation_runs_max_retries_plus_one_times(self):
        operation = Flaky(failures=100)

        with pytest.raises(TransientError) as exc_info:
            retry(3, 0.1, operation)

        assert operation.calls == 4
        assert exc_info.value is operation.errors[-1]

    def test_succeeds_on_third_attempt(self):
        operation = Flaky(failures=2, result="done")

        assert retry(3, 0.1, operation) == "done"
        assert operation.calls == 3

    def test_zero_retries_runs_once_without_sleeping(self, mock_sleep):
        operation = Flaky(failures=1)

        with pytest.raises(TransientError):
            RetryPolicy(max_retries=0, backoff_base=1.0).call(operation)

        assert operation.calls == 1
        mock_sleep.assert_not_called()

    def test_immediate_success_does_not_sleep(self, mock_sleep):
        assert RetryPolicy().call(lambda: 42) == 42
        mock_sleep.assert_not_called()


class TestBackoff:
    def test_delays_double_each_retry(self, mock_sleep):
        with pytest.raises(TransientError):
            RetryPolicy(max_retries=3, backoff_base=0.5).call(Flaky(failures=100))

        assert [call.args[0] for call in mock_sleep.call_args_list] == [0.5, 1.0, 2.0]

    def test_delay_for(self):
        policy = RetryPolicy(backoff_base=0.25)
        assert policy.delay_for(0) == 0.25
        assert policy.delay_for(3) == 2.0


class TestRetryPredicate:
    def test_rejected_error_propagates_immediately(self, mock_sleep):
        operation = Flaky(failures=5)
        policy = RetryPolicy(max_retries=3, retry_if=lambda e: False)

        with pytest.raises(TransientError):
            policy.call(operation)

        assert operation.calls == 1
        mock_sleep.assert_not_called()

    def test_predicate_receives_the_error(self):
        seen = []

        def retry_if(error):
            seen.append(error)
            return True

        operation = Flaky(failures=1)
        RetryPolicy(max_retries=2, retry_if=retry_if).call(operation)

        assert seen == operation.errors


class TestValidation:
    def test_negative_max_retries_rejected(self):
        with pytest.raises(ValueError, match="max_retries"):
            RetryPolicy(max_retries=-1)

    def test_negative_backoff_rejected(self):
        with pytest.raises(ValueError, match="backoff_base"):
            RetryPolicy(backoff_base=-0.1)


class TestLogging:
    def test_each_retry_is_logged_with_attempt_count(self, caplog):
        with caplog.at_level(logging.WARNING, logger="unistore.storage.retry"):
            RetryPolicy(max_retries=3).call(Flaky(failures=2), "get_object a.txt")

        messages = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert len(messages) == 2
        assert "get_object a.txt (1/3)" in messages[0]
        assert "failure 1" in messages[0]
        assert "(2/3)" in messages[1]

    def test_exhaustion_is_logged_as_error(self, caplog):
        with caplog.at_level(logging.ERROR, logger="unistore.storage.retry"):
            with pytest.raises(TransientError):
                RetryPolicy(max_retries=1).call(Flaky(failures=5), "put_object")

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "after 2 attempts" in errors[0].getMessage()
