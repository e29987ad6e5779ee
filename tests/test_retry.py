# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for RetryPolicy."""

from __future__ import annotations

import asyncio
import logging

import pytest

from pagesync.retry import RetryPolicy, RetryResult


class _Flaky:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures: int, value: object = "ok") -> None:
        self.failures = failures
        self.value = value
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom {self.calls}")
        return self.value


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestRetryPolicyValidation:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.backoff_ms == 1000

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_negative_backoff_rejected(self):
        with pytest.raises(ValueError, match="backoff_ms"):
            RetryPolicy(backoff_ms=-1)


class TestRetryPolicyRun:
    async def test_first_try_success(self):
        sleeps = _Sleeps()
        result = await RetryPolicy().run(_Flaky(0, 42), sleep=sleeps)
        assert result == RetryResult(ok=True, attempts=1, value=42)
        assert sleeps.calls == []

    async def test_success_after_failures_keeps_errors(self):
        sleeps = _Sleeps()
        result = await RetryPolicy().run(_Flaky(2), sleep=sleeps)
        assert result.ok
        assert result.attempts == 3
        assert [str(e) for e in result.errors] == ["boom 1", "boom 2"]
        assert sleeps.calls == [1.0, 1.0]

    async def test_exhausted(self):
        operation = _Flaky(10)
        sleeps = _Sleeps()
        result = await RetryPolicy(max_attempts=2, backoff_ms=50).run(operation, sleep=sleeps)
        assert not result.ok
        assert result.attempts == 2
        assert operation.calls == 2
        assert str(result.last_error) == "boom 2"
        assert sleeps.calls == [0.05]

    async def test_warning_per_failed_attempt(self, caplog):
        with caplog.at_level(logging.WARNING, logger="pagesync.retry"):
            await RetryPolicy().run(_Flaky(10), label="Loading widget", sleep=_Sleeps())
        messages = [r.getMessage() for r in caplog.records]
        assert len(messages) == 3
        assert messages[0].startswith("Loading widget failed (attempt 1/3), retrying in 1000ms")
        assert messages[2].startswith("Loading widget failed (attempt 3/3), giving up")

    async def test_cancellation_not_retried(self):
        async def cancelled():
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await RetryPolicy().run(cancelled, sleep=_Sleeps())

    def test_last_error_none_without_errors(self):
        assert RetryResult(ok=True, attempts=1).last_error is None
