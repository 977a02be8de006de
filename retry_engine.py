#!/usr/bin/env python3
"""
Retry engine with exponential backoff.

Every RPC call the checker makes goes through ``retry_call``. The loop is a
small explicit state machine (``RetryState``) driven by a classification
function that labels each outcome as success, retryable (absent data or
rate limiting) or fatal.

Delays start at ``base_delay`` and double after every retried attempt. There
is no jitter here; request pacing between calls is the caller's job.
"""

import re
import time
import requests
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from solana_utils import (
    RpcError, NetworkError, SlotSkippedError, ShapeMismatchError, VoteDecodeError,
    LeaderScheduleError,
    RETRY_BASE_DELAY, RETRY_MAX_ATTEMPTS, logger
)


class RetryOutcome(Enum):
    """Classification of a single attempt"""
    SUCCESS = "success"
    RETRYABLE_NOT_FOUND = "retryable_not_found"
    RETRYABLE_RATE_LIMITED = "retryable_rate_limited"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self in (RetryOutcome.RETRYABLE_NOT_FOUND, RetryOutcome.RETRYABLE_RATE_LIMITED)


# Error text that means "slow down and try again"
_RATE_LIMIT_PATTERN = re.compile(
    r'rate.?limit|too many requests|timed out|timeout',
    re.IGNORECASE
)

# A bare 429 in the text only counts when the error carries no status code
_STATUS_429_PATTERN = re.compile(r'\b429\b')

# Errors that are never worth another attempt
_NEVER_RETRY = (SlotSkippedError, ShapeMismatchError, VoteDecodeError, LeaderScheduleError)


def classify_error(error: Exception) -> RetryOutcome:
    """
    Classify a raised exception.

    Rate limiting (HTTP/JSON-RPC 429 or equivalent wording), request timeouts
    and dropped connections are retryable. Everything else is fatal.
    """
    if isinstance(error, _NEVER_RETRY):
        return RetryOutcome.FATAL
    if isinstance(error, RpcError) and error.code == 429:
        return RetryOutcome.RETRYABLE_RATE_LIMITED
    if isinstance(error, NetworkError) and isinstance(
            error.original_error, (requests.Timeout, requests.ConnectionError)):
        return RetryOutcome.RETRYABLE_RATE_LIMITED
    text = str(error)
    if _RATE_LIMIT_PATTERN.search(text):
        return RetryOutcome.RETRYABLE_RATE_LIMITED
    if getattr(error, 'code', None) is None and _STATUS_429_PATTERN.search(text):
        return RetryOutcome.RETRYABLE_RATE_LIMITED
    return RetryOutcome.FATAL


def classify_present(value: Any) -> RetryOutcome:
    """Any returned value counts as success"""
    return RetryOutcome.SUCCESS


def classify_absent_retryable(value: Any) -> RetryOutcome:
    """A None result means the remote has not produced the data yet"""
    if value is None:
        return RetryOutcome.RETRYABLE_NOT_FOUND
    return RetryOutcome.SUCCESS


@dataclass
class RetryState:
    """Attempt counter and current delay for one retried operation"""
    max_attempts: int
    delay: float
    attempt: int = 0
    delays: List[float] = field(default_factory=list)

    def start_attempt(self) -> int:
        self.attempt += 1
        return self.attempt

    def can_retry(self) -> bool:
        return self.attempt < self.max_attempts

    def next_delay(self) -> float:
        """Return the delay to sleep now and double it for the next retry"""
        current = self.delay
        self.delays.append(current)
        self.delay = current * 2
        return current


@dataclass
class RetryResult:
    """
    Final outcome of a retried operation.

    On exhaustion ``outcome`` is the last retryable classification and
    ``value``/``error`` hold the last observed result, untouched.
    """
    outcome: RetryOutcome
    value: Any = None
    error: Optional[Exception] = None
    attempts: int = 0
    delays: List[float] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome is RetryOutcome.SUCCESS

    @property
    def exhausted(self) -> bool:
        return self.outcome.retryable

    def unwrap(self) -> Any:
        """Return the value, re-raising the last error if there was one"""
        if self.error is not None:
            raise self.error
        return self.value


def _describe(outcome: RetryOutcome, error: Optional[Exception]) -> str:
    if outcome is RetryOutcome.RETRYABLE_NOT_FOUND:
        return "not available yet"
    if error is not None:
        return f"rate limited or timed out ({error})"
    return "rate limited or timed out"


def retry_call(operation: Callable[[], Any],
               classify: Callable[[Any], RetryOutcome] = classify_present,
               base_delay: float = RETRY_BASE_DELAY,
               max_attempts: int = RETRY_MAX_ATTEMPTS,
               description: str = "operation",
               sleep: Optional[Callable[[float], None]] = None) -> RetryResult:
    """
    Call ``operation`` until it succeeds, fails fatally, or runs out of attempts.

    Args:
        operation: Zero-argument callable doing one attempt
        classify: Maps a returned value to a RetryOutcome
        base_delay: Delay in seconds before the first retry
        max_attempts: Total number of calls allowed (>= 1)
        description: Label used in retry log lines
        sleep: Sleep function (defaults to time.sleep)

    Returns:
        RetryResult describing the final outcome
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    if sleep is None:
        sleep = time.sleep

    state = RetryState(max_attempts=max_attempts, delay=base_delay)

    while True:
        state.start_attempt()
        value = None
        error = None
        try:
            value = operation()
            outcome = classify(value)
        except Exception as e:
            error = e
            outcome = classify_error(e)

        if not outcome.retryable:
            if outcome is RetryOutcome.FATAL and error is not None:
                logger.debug(f"{description}: fatal error on attempt {state.attempt}: {error}")
            return RetryResult(outcome=outcome, value=value, error=error,
                               attempts=state.attempt, delays=list(state.delays))

        if not state.can_retry():
            logger.warning(
                f"{description}: {_describe(outcome, error)}, giving up after "
                f"{state.attempt} attempts"
            )
            return RetryResult(outcome=outcome, value=value, error=error,
                               attempts=state.attempt, delays=list(state.delays))

        delay = state.next_delay()
        logger.warning(
            f"{description}: {_describe(outcome, error)}. Retrying in {delay}s "
            f"(attempt {state.attempt}/{state.max_attempts})"
        )
        sleep(delay)
