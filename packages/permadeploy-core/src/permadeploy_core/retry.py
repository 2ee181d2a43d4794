"""Retry policy values and tenacity-based exponential backoff.

A ``RetryPolicy`` is passed explicitly to every operation that retries;
there is no module-level default shared behind the caller's back.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from permadeploy_core.errors import DeployError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A carrier that is already spent can never become spendable again.
FATAL_MESSAGES = (
    "already spent",
    "double spend",
    "txn-mempool-conflict",
    "missing inputs",
    "bad-txns-inputs-spent",
)

TRANSIENT_MESSAGES = (
    "utxo not found",
    "utxo-not-found",
    "utxo_not_found",
    "network",
    "timeout",
    "timed out",
    "econnrefused",
    "econnreset",
    "enotfound",
    "429",
    "too many requests",
    "rate limit",
)


def is_spent_carrier_message(message: str) -> bool:
    lowered = message.lower()
    return any(m in lowered for m in FATAL_MESSAGES)


def is_retryable_error(exc: BaseException) -> bool:
    """Classify *exc* as transient (retry) or fatal (propagate immediately)."""
    if isinstance(exc, DeployError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True

    message = str(exc).lower()
    if is_spent_carrier_message(message):
        return False
    return any(m in message for m in TRANSIENT_MESSAGES)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: delay = initial * multiplier**n, capped."""

    max_attempts: int = 5
    initial_delay: float = 2.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")

    def delays(self) -> list[float]:
        """The sleep schedule between attempts (one fewer than max_attempts)."""
        return [
            min(self.initial_delay * self.multiplier**n, self.max_delay)
            for n in range(self.max_attempts - 1)
        ]

    def with_overrides(self, **changes: object) -> RetryPolicy:
        values = {
            "max_attempts": self.max_attempts,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "multiplier": self.multiplier,
            "retryable": self.retryable,
        }
        values.update(changes)
        return RetryPolicy(**values)  # type: ignore[arg-type]


NO_RETRY = RetryPolicy(max_attempts=1, initial_delay=0.0, max_delay=0.0)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
) -> T:
    """Run *operation* until it succeeds, fails fatally, or attempts run out.

    Non-retryable exceptions propagate unchanged on first occurrence.
    Exhausting the policy raises RetryExhaustedError wrapping the last error.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay,
            max=policy.max_delay,
            exp_base=policy.multiplier,
        ),
        retry=retry_if_exception(policy.retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=False,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except RetryError as e:
        last = e.last_attempt.exception()
        cause = last if isinstance(last, Exception) else e
        raise RetryExhaustedError(description, policy.max_attempts, cause) from cause
    raise AssertionError("unreachable")  # pragma: no cover
