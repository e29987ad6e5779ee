# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Install quiescence instrumentation into the current execution context.

The instrumented flag is never cached host-side: a navigation silently wipes
the page globals, so every ``ensure_injected`` call starts with a marker
probe against the browser.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum

from .capabilities import Capability, PageProbes, Probe
from .config import SyncConfig
from .errors import InjectionError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class InjectionStatus(StrEnum):
    INJECTED = "injected"
    ALREADY_PRESENT = "already_present"
    ABANDONED = "abandoned"


@dataclass(frozen=True, slots=True)
class InjectionResult:
    status: InjectionStatus
    attempts: int
    errors: tuple[Exception, ...] = field(default_factory=tuple)

    @property
    def instrumented(self) -> bool:
        return self.status is not InjectionStatus.ABANDONED


class InstrumentationInjector:
    """Installs the capability scripts exactly once per execution context."""

    def __init__(
        self,
        probes: PageProbes,
        *,
        config: SyncConfig | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.probes = probes
        self.config = config or SyncConfig()
        self.retry_policy = RetryPolicy(
            max_attempts=self.config.injection_attempts,
            backoff_ms=self.config.injection_backoff_ms,
        )
        self._sleep = sleep

    @property
    def capabilities(self) -> tuple[Capability, ...]:
        """Install order. DOM utils go last because they carry the marker."""
        if self.config.network_monitor:
            return (Capability.QUIESCENCE_PROBES, Capability.NETWORK_MONITOR, Capability.DOM_UTILS)
        return (Capability.QUIESCENCE_PROBES, Capability.DOM_UTILS)

    async def is_instrumented(self) -> bool:
        """Probe the browser for the instrumentation marker."""
        return bool(await self.probes.query(Probe.INSTRUMENTED))

    async def ensure_capability(self, capability: Capability) -> bool:
        """Install a single capability. Returns False when already present."""
        return await self.probes.install(capability)

    async def _inject_once(self) -> InjectionStatus:
        if await self.is_instrumented():
            return InjectionStatus.ALREADY_PRESENT
        for capability in self.capabilities:
            await self.ensure_capability(capability)
        return InjectionStatus.INJECTED

    async def ensure_injected(self) -> InjectionResult:
        """Make sure the current context carries the probes.

        Retries per ``retry_policy``. Exhausted retries leave the context
        un-instrumented and return ``ABANDONED`` (or raise ``InjectionError``
        in strict mode).
        """
        outcome = await self.retry_policy.run(
            self._inject_once,
            label="Injecting sync instrumentation",
            sleep=self._sleep,
        )
        if outcome.ok:
            status: InjectionStatus = outcome.value
            if status is InjectionStatus.INJECTED:
                logger.info("Sync instrumentation loaded (attempt %d)", outcome.attempts)
            else:
                logger.debug("Sync instrumentation already present")
            return InjectionResult(status=status, attempts=outcome.attempts, errors=outcome.errors)

        if self.config.strict:
            raise InjectionError(
                f"Could not inject sync instrumentation after {outcome.attempts} attempts: {outcome.last_error}",
                attempts=outcome.attempts,
            ) from outcome.last_error
        return InjectionResult(status=InjectionStatus.ABANDONED, attempts=outcome.attempts, errors=outcome.errors)
