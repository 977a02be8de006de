"""
Tests for retry_engine module.
"""
import pytest
import requests
from unittest.mock import Mock

from retry_engine import (
    RetryOutcome, RetryState, retry_call, classify_error, classify_present,
    classify_absent_retryable
)
from solana_utils import RpcError, NetworkError, SlotSkippedError, ShapeMismatchError


class TestClassifyError:
    """Tests for error classification"""

    def test_rpc_429_is_rate_limited(self):
        assert classify_error(RpcError("slow down", code=429)) is RetryOutcome.RETRYABLE_RATE_LIMITED

    def test_rate_limit_wording(self):
        error = RpcError("getBlock error -32005: Rate limit exceeded", code=-32005)
        assert classify_error(error) is RetryOutcome.RETRYABLE_RATE_LIMITED

    def test_too_many_requests_wording(self):
        assert classify_error(Exception("Too Many Requests")) is RetryOutcome.RETRYABLE_RATE_LIMITED

    def test_timeout_is_retryable(self):
        error = NetworkError("request failed", original_error=requests.Timeout())
        assert classify_error(error) is RetryOutcome.RETRYABLE_RATE_LIMITED

    def test_connection_hiccup_is_retryable(self):
        error = NetworkError("request failed", original_error=requests.ConnectionError())
        assert classify_error(error) is RetryOutcome.RETRYABLE_RATE_LIMITED

    def test_other_rpc_error_is_fatal(self):
        assert classify_error(RpcError("Invalid param", code=-32602)) is RetryOutcome.FATAL

    def test_slot_number_containing_429_is_fatal(self):
        """429 inside a larger number is not a rate limit signal"""
        error = RpcError("Transaction 342912345 failed", code=-32600)
        assert classify_error(error) is RetryOutcome.FATAL

    def test_coded_error_mentioning_429_is_fatal(self):
        """A structured code wins over a standalone 429 in the message"""
        error = RpcError("Invalid param: slot 429 is before the first available block", code=-32602)
        assert classify_error(error) is RetryOutcome.FATAL

    def test_uncoded_error_mentioning_429_is_rate_limited(self):
        assert classify_error(Exception("HTTP 429")) is RetryOutcome.RETRYABLE_RATE_LIMITED

    def test_skipped_slot_is_never_retried(self):
        assert classify_error(SlotSkippedError("Slot 429 was skipped")) is RetryOutcome.FATAL

    def test_shape_mismatch_is_fatal(self):
        assert classify_error(ShapeMismatchError("missing transactions")) is RetryOutcome.FATAL


class TestClassifyValue:
    """Tests for value classification"""

    def test_absent_is_retryable(self):
        assert classify_absent_retryable(None) is RetryOutcome.RETRYABLE_NOT_FOUND

    def test_present_is_success(self):
        assert classify_absent_retryable({}) is RetryOutcome.SUCCESS

    def test_classify_present_accepts_none(self):
        assert classify_present(None) is RetryOutcome.SUCCESS


class TestRetryState:
    """Tests for the retry state machine"""

    def test_delay_doubles(self):
        state = RetryState(max_attempts=5, delay=2)

        delays = [state.next_delay() for _ in range(4)]

        assert delays == [2, 4, 8, 16]
        assert state.delays == delays
        assert state.delay == 32

    def test_can_retry(self):
        state = RetryState(max_attempts=2, delay=1)
        state.start_attempt()
        assert state.can_retry()
        state.start_attempt()
        assert not state.can_retry()


class TestRetryCall:
    """Tests for retry_call"""

    def test_success_first_try(self):
        sleep = Mock()

        result = retry_call(lambda: "ok", sleep=sleep)

        assert result.succeeded
        assert result.value == "ok"
        assert result.attempts == 1
        sleep.assert_not_called()

    def test_absent_then_success_on_last_attempt(self):
        """Absent on attempts 1-4, present on attempt 5 of 5"""
        values = [None, None, None, None, {'transactions': []}]
        operation = Mock(side_effect=values)
        sleep = Mock()

        result = retry_call(operation, classify=classify_absent_retryable,
                            base_delay=3, max_attempts=5, sleep=sleep)

        assert result.succeeded
        assert result.value == {'transactions': []}
        assert result.attempts == 5
        assert operation.call_count == 5
        assert [c.args[0] for c in sleep.call_args_list] == [3, 6, 12, 24]
        assert result.delays == [3, 6, 12, 24]

    def test_delays_double_for_every_retry(self):
        sleep = Mock()

        result = retry_call(lambda: None, classify=classify_absent_retryable,
                            base_delay=2, max_attempts=6, sleep=sleep)

        delays = result.delays
        for previous, current in zip(delays, delays[1:]):
            assert current == 2 * previous

    def test_absent_exhaustion_returns_last_outcome(self):
        operation = Mock(return_value=None)
        sleep = Mock()

        result = retry_call(operation, classify=classify_absent_retryable,
                            base_delay=1, max_attempts=3, sleep=sleep)

        assert not result.succeeded
        assert result.exhausted
        assert result.outcome is RetryOutcome.RETRYABLE_NOT_FOUND
        assert result.value is None
        assert result.error is None
        assert operation.call_count == 3
        assert sleep.call_count == 2

    def test_rate_limit_exhaustion_keeps_last_error(self):
        errors = [RpcError(f"429 #{i}", code=429) for i in range(5)]
        operation = Mock(side_effect=errors)

        result = retry_call(operation, base_delay=1, max_attempts=5, sleep=Mock())

        assert result.outcome is RetryOutcome.RETRYABLE_RATE_LIMITED
        assert result.error is errors[-1]
        assert result.attempts == 5
        with pytest.raises(RpcError):
            result.unwrap()

    def test_fatal_error_stops_immediately(self):
        operation = Mock(side_effect=RpcError("Invalid params", code=-32602))
        sleep = Mock()

        result = retry_call(operation, max_attempts=5, sleep=sleep)

        assert result.outcome is RetryOutcome.FATAL
        assert result.attempts == 1
        assert operation.call_count == 1
        sleep.assert_not_called()

    def test_rate_limited_then_success(self):
        operation = Mock(side_effect=[RpcError("429", code=429), "value"])
        sleep = Mock()

        result = retry_call(operation, base_delay=2, max_attempts=5, sleep=sleep)

        assert result.succeeded
        assert result.value == "value"
        sleep.assert_called_once_with(2)

    def test_single_attempt_budget(self):
        operation = Mock(return_value=None)

        result = retry_call(operation, classify=classify_absent_retryable, max_attempts=1, sleep=Mock())

        assert result.attempts == 1
        assert result.exhausted

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            retry_call(lambda: None, max_attempts=0)

    def test_logs_each_retry(self, caplog):
        with caplog.at_level("WARNING"):
            retry_call(lambda: None, classify=classify_absent_retryable,
                       base_delay=1, max_attempts=3, description="Block 7", sleep=Mock())

        retries = [r for r in caplog.records if "Retrying in" in r.getMessage()]
        assert len(retries) == 2
        assert "attempt 1/3" in retries[0].getMessage()
        assert "Block 7" in retries[0].getMessage()
