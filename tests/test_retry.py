"""Tests for retry classification and tenacity-backed backoff."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from permadeploy_core.errors import (
    InsufficientFundsError,
    RetryExhaustedError,
    SpentCarrierError,
    TransientNetworkError,
)
from permadeploy_core.retry import (
    NO_RETRY,
    RetryPolicy,
    is_retryable_error,
    is_spent_carrier_message,
    retry_with_backoff,
)


# ── Classification ─────────────────────────────────────────────────


class TestIsRetryableError:
    def test_transient_network_error(self):
        assert is_retryable_error(TransientNetworkError("timeout"))

    def test_spent_carrier_is_fatal(self):
        assert not is_retryable_error(SpentCarrierError("already spent"))

    def test_insufficient_funds_is_fatal(self):
        assert not is_retryable_error(InsufficientFundsError("addr", 10, 1))

    @pytest.mark.parametrize(
        "message",
        ["txn-mempool-conflict", "bad-txns-inputs-spent", "Missing inputs", "double spend"],
    )
    def test_spent_messages_are_fatal(self, message):
        assert not is_retryable_error(RuntimeError(message))

    @pytest.mark.parametrize(
        "message",
        ["ECONNRESET", "request timed out", "429 Too Many Requests", "UTXO not found"],
    )
    def test_transient_messages_retry(self, message):
        assert is_retryable_error(RuntimeError(message))

    def test_unknown_error_is_fatal(self):
        assert not is_retryable_error(ValueError("bad script"))

    def test_http_status_5xx_retries(self):
        request = httpx.Request("POST", "https://x/v5/tx")
        response = httpx.Response(503, request=request)
        exc = httpx.HTTPStatusError("unavailable", request=request, response=response)
        assert is_retryable_error(exc)

    def test_http_status_4xx_is_fatal(self):
        request = httpx.Request("POST", "https://x/v5/tx")
        response = httpx.Response(400, request=request)
        exc = httpx.HTTPStatusError("bad request", request=request, response=response)
        assert not is_retryable_error(exc)

    def test_transport_error_retries(self):
        assert is_retryable_error(httpx.ConnectError("refused"))


def test_spent_message_detection_is_case_insensitive():
    assert is_spent_carrier_message("Transaction ALREADY SPENT")
    assert not is_spent_carrier_message("timeout")


# ── RetryPolicy ────────────────────────────────────────────────────


class TestRetryPolicy:
    def test_default_delays_are_capped(self):
        assert RetryPolicy().delays() == [2.0, 4.0, 8.0, 16.0]
        assert RetryPolicy(max_attempts=7).delays()[-1] == 30.0

    def test_invalid_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(initial_delay=-1)

    def test_with_overrides_keeps_other_fields(self):
        policy = RetryPolicy(max_attempts=3).with_overrides(initial_delay=0.5)
        assert policy.max_attempts == 3
        assert policy.initial_delay == 0.5

    def test_no_retry_is_single_attempt(self):
        assert NO_RETRY.max_attempts == 1
        assert NO_RETRY.delays() == []


# ── retry_with_backoff ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_returns_first_success(fast_policy):
    op = AsyncMock(return_value="txid")
    assert await retry_with_backoff(op, fast_policy) == "txid"
    assert op.await_count == 1


@pytest.mark.asyncio
async def test_retries_transient_then_succeeds(fast_policy):
    op = AsyncMock(side_effect=[TransientNetworkError("timeout"), "txid"])
    assert await retry_with_backoff(op, fast_policy) == "txid"
    assert op.await_count == 2


@pytest.mark.asyncio
async def test_fatal_error_propagates_immediately(fast_policy):
    op = AsyncMock(side_effect=SpentCarrierError("already spent"))
    with pytest.raises(SpentCarrierError):
        await retry_with_backoff(op, fast_policy)
    assert op.await_count == 1


@pytest.mark.asyncio
async def test_exhaustion_wraps_last_error(fast_policy):
    last = TransientNetworkError("still down")
    op = AsyncMock(side_effect=[TransientNetworkError("down"), TransientNetworkError("down"), last])
    with pytest.raises(RetryExhaustedError) as exc_info:
        await retry_with_backoff(op, fast_policy, "broadcast abc")

    err = exc_info.value
    assert err.attempts == 3
    assert err.operation == "broadcast abc"
    assert err.__cause__ is last
    assert op.await_count == 3


@pytest.mark.asyncio
async def test_custom_classifier(fast_policy):
    policy = fast_policy.with_overrides(retryable=lambda e: isinstance(e, KeyError))
    op = AsyncMock(side_effect=[KeyError("x"), "ok"])
    assert await retry_with_backoff(op, policy) == "ok"
