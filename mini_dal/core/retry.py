"""Bounded retry with exponential backoff for transient store failures."""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from .errors import ContractError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry limits for `execute_with_retry`.

    Attributes:
        max_attempts: Total attempts, including the first one.
        initial_delay: Seconds to wait after the first failure.
        max_delay: Upper bound for one wait; the delay doubles per attempt.
        sleep: Blocking sleep function (replaceable in tests).
    """

    max_attempts: int = 3
    initial_delay: float = 0.2
    max_delay: float = 4.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ContractError("max_attempts must be >= 1.")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ContractError("Retry delays must be >= 0.")

    def delay_for(self, attempt: int) -> float:
        """Wait before attempt `attempt + 1` (attempts are 1-based)."""

        return min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)


def is_transient(exc: BaseException) -> bool:
    """Whether `exc` is a timeout or lock-class failure worth retrying."""

    return isinstance(exc, (TransientError, TimeoutError))


def execute_with_retry(operation: Callable[[], T], policy: Optional[RetryPolicy] = None) -> T:
    """Invoke `operation`, retrying transient failures with backoff.

    Non-transient failures propagate immediately; the last transient failure
    propagates once `policy.max_attempts` is exhausted.
    """

    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as exc:
            if not is_transient(exc) or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Transient failure on attempt %d/%d (%s); retrying in %.3fs",
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            policy.sleep(delay)
            attempt += 1


def retrying(policy: Optional[RetryPolicy] = None):
    """Decorator form of `execute_with_retry`."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return execute_with_retry(lambda: func(*args, **kwargs), policy)

        return wrapper

    return decorator
