# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page quiescence detection.

After an action the page goes through three overlapping kinds of work:
network calls, DOM updates, and plain script/layout work that keeps the
main thread busy. The detector runs a small state machine over probes for
each of them:

    START -> BUSY_DETECTION -> STEADY_POLL -> QUIESCENT | TIMED_OUT

BUSY_DETECTION waits (bounded) for the page to *start* reacting, so a slow
reaction is not mistaken for idleness. STEADY_POLL then checks network,
DOM and busyness in that priority order until one confirming sample comes
back all clear.

Probe failures raise ProbeError. Deadline expiry is soft (logged, reported
as TIMED_OUT) unless the config is strict.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum

from .calibration import CalibrationState
from .capabilities import PageProbes, Probe
from .config import SyncConfig
from .errors import SyncTimeoutError
from .phase_timer import PhaseTimer
from .screenshots import ScreenshotSink

logger = logging.getLogger(__name__)


class DetectorPhase(StrEnum):
    START = "start"
    BUSY_DETECTION = "busy_detection"
    STEADY_POLL = "steady_poll"
    QUIESCENT = "quiescent"
    TIMED_OUT = "timed_out"


class WaitOutcome(StrEnum):
    QUIESCENT = "quiescent"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class ActivitySignal:
    """One sample of page activity."""

    network_pending: bool = False
    dom_mutated: bool = False
    busy: bool = False

    @property
    def active(self) -> bool:
        return self.network_pending or self.dom_mutated or self.busy


@dataclass(frozen=True, slots=True)
class WaitResult:
    outcome: WaitOutcome
    elapsed_ms: float
    busy_detected: bool = False
    ticks: int = 0
    phases: dict[str, float] = field(default_factory=dict)

    @property
    def quiescent(self) -> bool:
        return self.outcome is WaitOutcome.QUIESCENT


class QuiescenceDetector:
    """Decides when the page has stopped reacting to the last action.

    Owns its CalibrationState. Not safe for concurrent use: one detector per
    automation session.
    """

    def __init__(
        self,
        probes: PageProbes,
        *,
        config: SyncConfig | None = None,
        screenshots: ScreenshotSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.probes = probes
        self.config = config or SyncConfig()
        self.screenshots = screenshots
        self.calibration = CalibrationState(threshold_ms=self.config.initial_threshold_ms)
        self.phase = DetectorPhase.START
        self._clock = clock
        self._sleep = sleep

    # ── Probes ────────────────────────────────────────────────────────

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000

    async def network_pending(self) -> bool:
        return bool(await self.probes.query(Probe.NETWORK_PENDING))

    async def dom_mutated(self) -> bool:
        return bool(await self.probes.query(Probe.DOM_MUTATED))

    async def busy(self) -> bool:
        """Timer probe: True when the page's moving-average latency exceeds the threshold."""
        arg = [self.config.busy_base_delay_ms, self.calibration.threshold_ms]
        return bool(await self.probes.query(Probe.BUSY, arg))

    async def sample(self) -> ActivitySignal:
        """Confirming sample: readyState/network OR DOM OR busy."""
        raw = await self.probes.query(Probe.ACTIVITY)
        raw = raw if isinstance(raw, dict) else {}
        return ActivitySignal(
            network_pending=bool(raw.get("networkPending", False)),
            dom_mutated=bool(raw.get("domMutated", False)),
            busy=await self.busy(),
        )

    # ── Phases ────────────────────────────────────────────────────────

    async def _detect_busy_start(self, start: float) -> bool:
        bound = self.config.busy_detection_ms
        while self._elapsed_ms(start) < bound:
            if await self.busy():
                logger.info("Browser activity detected after %.0fms", self._elapsed_ms(start))
                return True
        logger.info("Could not detect the start of browser activity after %.0fms", self._elapsed_ms(start))
        return False

    def _deadline_passed(self, start: float) -> bool:
        limit = self.config.steady_poll_timeout_ms
        return limit is not None and self._elapsed_ms(start) >= limit

    async def _steady_poll(self, start: float) -> tuple[WaitOutcome, int]:
        settle = self.config.settle_ms / 1000
        ticks = 0
        while True:
            # the first tick always runs to its confirming sample
            if ticks and self._deadline_passed(start):
                return WaitOutcome.TIMED_OUT, ticks
            ticks += 1

            if await self.network_pending():
                logger.info("Waiting on network activity: %.0fms", self._elapsed_ms(start))
                await self._sleep(settle)
                continue

            if await self.dom_mutated():
                logger.info("Waiting on DOM activity: %.0fms", self._elapsed_ms(start))
                await self._sleep(settle)
                continue

            # no settle sleep: the busy probe itself already spans busy_base_delay_ms
            if await self.busy():
                logger.info("Waiting on BUSY browser: %.0fms", self._elapsed_ms(start))
                continue

            await self._sleep(settle)
            signal = await self.sample()
            if not signal.active:
                logger.info("No more browser activity of any kind detected: %.0fms", self._elapsed_ms(start))
                return WaitOutcome.QUIESCENT, ticks
            logger.info(
                "More browser activity detected (network=%s dom=%s busy=%s), running sync again: %.0fms",
                signal.network_pending,
                signal.dom_mutated,
                signal.busy,
                self._elapsed_ms(start),
            )

    # ── Entry point ───────────────────────────────────────────────────

    async def wait(self, description: str = "") -> WaitResult:
        """Block until the page is quiescent or the steady-poll deadline passes.

        Requires the quiescence probes to be installed in the current context.
        """
        start = self._clock()
        timer = PhaseTimer(clock=self._clock)

        self.phase = DetectorPhase.BUSY_DETECTION
        timer.phase(DetectorPhase.BUSY_DETECTION)
        busy_detected = await self._detect_busy_start(start)

        self.phase = DetectorPhase.STEADY_POLL
        timer.phase(DetectorPhase.STEADY_POLL)
        outcome, ticks = await self._steady_poll(start)

        report = timer.timeout_report() if outcome is WaitOutcome.TIMED_OUT else None
        timer.finalize()
        self.phase = DetectorPhase(outcome.value)
        result = WaitResult(
            outcome=outcome,
            elapsed_ms=self._elapsed_ms(start),
            busy_detected=busy_detected,
            ticks=ticks,
            phases=timer.elapsed_per_phase(),
        )

        if report is not None:
            if self.config.strict:
                raise SyncTimeoutError(
                    f"Page did not become quiescent within {self.config.steady_poll_timeout_ms}ms",
                    phase=DetectorPhase.STEADY_POLL,
                    elapsed_ms=result.elapsed_ms,
                )
            logger.warning("Quiescence wait timed out, proceeding anyway: %s", report)
            return result

        await self.record_screenshot(f"{description} Browser sync completed")
        return result

    async def record_screenshot(self, description: str) -> None:
        if self.screenshots is None:
            return
        try:
            image = await self.probes.bridge.screenshot()
        except Exception:
            logger.warning("Screenshot capture failed for '%s', continuing", description, exc_info=True)
            return
        self.screenshots.add_shot(image, description)
