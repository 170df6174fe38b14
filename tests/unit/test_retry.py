"""Unit tests for resilience_engine.retry - the retry executor."""

from __future__ import annotations

import asyncio

import pytest

from resilience_engine.exceptions import RetryExhaustedError
from resilience_engine.retry import (
    RetryOptions,
    is_retryable_http_error,
    is_transient_error,
    retry,
    retry_http_request,
    retry_on_specific_errors,
    retry_with_linear_backoff,
    retryable,
)

_NO_WAIT = {"initial_delay": 0.0, "max_delay": 0.0, "jitter": False}


class _Flaky:
    """Fails ``failures`` times with ``error`` and then returns ``value``."""

    def __init__(self, failures: int, error: Exception, value: str = "ok") -> None:
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


# ---- Predicates --------------------------------------------------------------


class TestPredicates:
    def test_transient_markers_in_message(self) -> None:
        assert is_transient_error(RuntimeError("connect ECONNRESET 10.0.0.1"))
        assert is_transient_error(RuntimeError("upstream TIMEOUT"))

    def test_builtin_network_errors_are_transient(self) -> None:
        assert is_transient_error(ConnectionResetError("reset by peer"))
        assert is_transient_error(TimeoutError())

    def test_validation_error_is_not_transient(self) -> None:
        assert not is_transient_error(ValueError("bad input"))

    def test_http_predicate(self) -> None:
        assert is_retryable_http_error(RuntimeError("Request failed with 503"))
        assert is_retryable_http_error(RuntimeError("getaddrinfo ENOTFOUND api"))
        assert not is_retryable_http_error(RuntimeError("Request failed with 404"))


# ---- Options -----------------------------------------------------------------


class TestRetryOptions:
    def test_defaults(self) -> None:
        opts = RetryOptions()
        assert opts.max_attempts == 3
        assert opts.initial_delay == 1.0
        assert opts.max_delay == 30.0
        assert opts.backoff_factor == 2.0
        assert opts.jitter is True
        assert opts.retry_condition is is_transient_error

    def test_merge_returns_new_instance(self) -> None:
        base = RetryOptions()
        merged = base.merge(max_attempts=5)
        assert merged.max_attempts == 5
        assert base.max_attempts == 3

    def test_merge_without_overrides_is_identity(self) -> None:
        base = RetryOptions()
        assert base.merge() is base

    def test_merge_validates(self) -> None:
        with pytest.raises(ValueError):
            RetryOptions().merge(max_attempts=0)


# ---- Executor ----------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_returns_first_success(self) -> None:
        op = _Flaky(2, ConnectionError("ECONNRESET"))
        assert await retry(op, max_attempts=3, **_NO_WAIT) == "ok"
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_error_carries_attempts_and_cause(self) -> None:
        error = ConnectionError("ECONNREFUSED")
        op = _Flaky(10, error)

        with pytest.raises(RetryExhaustedError) as excinfo:
            await retry(op, max_attempts=3, **_NO_WAIT)

        assert op.calls == 3
        assert excinfo.value.attempts == 3
        assert excinfo.value.last_error is error
        assert excinfo.value.__cause__ is error
        assert "Function failed after 3 attempts" in str(excinfo.value)
        assert "ECONNREFUSED" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_after_one_call(self) -> None:
        error = ValueError("invalid order id")
        op = _Flaky(10, error)

        with pytest.raises(ValueError) as excinfo:
            await retry(op, max_attempts=5, **_NO_WAIT)

        assert excinfo.value is error
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_single_attempt_wraps_even_non_retryable(self) -> None:
        op = _Flaky(10, ValueError("nope"))
        with pytest.raises(RetryExhaustedError):
            await retry(op, max_attempts=1, **_NO_WAIT)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_on_retry_called_between_attempts(self) -> None:
        seen: list[tuple[str, int]] = []

        def observer(error: BaseException, attempt: int) -> None:
            seen.append((str(error), attempt))

        op = _Flaky(2, ConnectionError("ETIMEDOUT"))
        await retry(op, max_attempts=3, on_retry=observer, **_NO_WAIT)

        assert seen == [("ETIMEDOUT", 1), ("ETIMEDOUT", 2)]

    @pytest.mark.asyncio
    async def test_async_on_retry_is_awaited_before_next_attempt(self) -> None:
        order: list[str] = []

        async def observer(error: BaseException, attempt: int) -> None:
            await asyncio.sleep(0)
            order.append(f"recover-{attempt}")

        async def op() -> str:
            order.append("call")
            if len(order) < 3:
                raise ConnectionError("ECONNRESET")
            return "done"

        assert await retry(op, max_attempts=3, on_retry=observer, **_NO_WAIT) == "done"
        assert order == ["call", "recover-1", "call"]

    @pytest.mark.asyncio
    async def test_on_retry_not_called_after_last_attempt(self) -> None:
        calls: list[int] = []
        op = _Flaky(10, ConnectionError("ECONNRESET"))

        with pytest.raises(RetryExhaustedError):
            await retry(
                op, max_attempts=2, on_retry=lambda e, n: calls.append(n), **_NO_WAIT
            )

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_retry_condition_none_retries_everything(self) -> None:
        op = _Flaky(2, ValueError("flaky"))
        assert await retry(op, max_attempts=3, retry_condition=None, **_NO_WAIT) == "ok"

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self) -> None:
        calls = {"count": 0}

        async def op() -> str:
            calls["count"] += 1
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await retry(op, max_attempts=3, retry_condition=None, **_NO_WAIT)
        assert calls["count"] == 1


# ---- Presets -----------------------------------------------------------------


class TestPresets:
    @pytest.mark.asyncio
    async def test_linear_backoff(self) -> None:
        op = _Flaky(1, ConnectionError("ECONNRESET"))
        assert await retry_with_linear_backoff(op, max_attempts=2, delay=0.0) == "ok"

    @pytest.mark.asyncio
    async def test_specific_errors_only(self) -> None:
        op = _Flaky(1, RuntimeError("E_LOCKED: row busy"))
        assert await retry_on_specific_errors(op, ["E_LOCKED"], max_attempts=2) == "ok"

    @pytest.mark.asyncio
    async def test_specific_errors_rejects_others(self) -> None:
        op = _Flaky(1, RuntimeError("E_OTHER"))
        with pytest.raises(RuntimeError, match="E_OTHER"):
            await retry_on_specific_errors(op, ["E_LOCKED"], max_attempts=2)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_http_request_does_not_retry_client_errors(self) -> None:
        op = _Flaky(1, RuntimeError("Request failed with status code 404"))
        with pytest.raises(RuntimeError):
            await retry_http_request(op)
        assert op.calls == 1


class TestRetryableDecorator:
    @pytest.mark.asyncio
    async def test_wraps_coroutine_function(self) -> None:
        calls = {"count": 0}

        @retryable(max_attempts=3, **_NO_WAIT)
        async def fetch(order_id: str) -> str:
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConnectionError("ECONNRESET")
            return order_id

        assert await fetch("A-1") == "A-1"
        assert calls["count"] == 2
        assert fetch.__name__ == "fetch"
