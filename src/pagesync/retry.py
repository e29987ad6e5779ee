# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Explicit retry policy.

``RetryPolicy.run`` never swallows silently: every failed attempt is logged
as a warning and the outcome comes back as a ``RetryResult`` the caller has
to inspect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryResult:
    """Outcome of a retried operation."""

    ok: bool
    attempts: int
    value: Any = None
    errors: tuple[Exception, ...] = field(default_factory=tuple)

    @property
    def last_error(self) -> Exception | None:
        return self.errors[-1] if self.errors else None


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Fixed-backoff retry: ``max_attempts`` tries, ``backoff_ms`` apart."""

    max_attempts: int = 3
    backoff_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_ms < 0:
            raise ValueError("backoff_ms must be >= 0")

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        *,
        label: str = "operation",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> RetryResult:
        """Run ``operation`` until it succeeds or attempts run out.

        Sleeps ``backoff_ms`` between attempts only (not after the last one).
        ``asyncio.CancelledError`` is not caught.
        """
        errors: list[Exception] = []
        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await operation()
            except Exception as exc:
                errors.append(exc)
                if attempt < self.max_attempts:
                    logger.warning(
                        "%s failed (attempt %d/%d), retrying in %dms: %s",
                        label,
                        attempt,
                        self.max_attempts,
                        self.backoff_ms,
                        exc,
                    )
                    await sleep(self.backoff_ms / 1000)
                else:
                    logger.warning(
                        "%s failed (attempt %d/%d), giving up: %s",
                        label,
                        attempt,
                        self.max_attempts,
                        exc,
                    )
                continue
            return RetryResult(ok=True, attempts=attempt, value=value, errors=tuple(errors))
        return RetryResult(ok=False, attempts=self.max_attempts, errors=tuple(errors))
