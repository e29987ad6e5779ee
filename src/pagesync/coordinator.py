# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Run one scripted action with hooks and page synchronization.

Order is fixed:

    before -> action -> after_pre_sync -> sync -> after_post_sync -> (re-)inject

Hooks are diagnostic only. A failing hook is recorded in the ActionReport
and logged as an error, it never stops the sequence.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .bridge import ScriptBridge
from .calibration import BusyCalibrator
from .capabilities import PageProbes, Probe
from .config import SyncConfig
from .errors import SyncTimeoutError
from .injector import InjectionResult, InstrumentationInjector
from .logging_config import action_context
from .phase_timer import PhaseTimer
from .quiescence import QuiescenceDetector, WaitOutcome, WaitResult
from .recorders import EventRecorder, NetworkMonitor
from .screenshots import ScreenshotManager, ScreenshotSink

logger = logging.getLogger(__name__)


class SyncMode(StrEnum):
    PAGE_LOAD = "page_load"
    AJAX = "ajax"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class HookResult:
    ok: bool
    message: str = ""


# Hooks and actions receive the bridge's current execution context.
Hook = Callable[[Any], "HookResult | bool | Awaitable[HookResult | bool]"]
Action = Callable[[Any], "Awaitable[object] | object"]


@dataclass(frozen=True, slots=True)
class ActionHooks:
    before: Hook | None = None
    after_pre_sync: Hook | None = None
    after_post_sync: Hook | None = None


@dataclass(frozen=True, slots=True)
class HookOutcome:
    stage: str
    result: HookResult


@dataclass
class ActionReport:
    description: str
    hooks: list[HookOutcome] = field(default_factory=list)
    sync: WaitResult | None = None
    injection: InjectionResult | None = None
    value: Any = None  # what the action returned (awaited when async)

    @property
    def hooks_ok(self) -> bool:
        return all(h.result.ok for h in self.hooks)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ActionCoordinator:
    """Per-session entry point: actions, sync strategies and instrumentation."""

    def __init__(
        self,
        bridge: ScriptBridge,
        *,
        config: SyncConfig | None = None,
        screenshots: ScreenshotSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.bridge = bridge
        self.config = config or SyncConfig()
        if isinstance(screenshots, ScreenshotManager) and screenshots.environment is None:
            screenshots.environment = self.config.environment
        self.screenshots = screenshots
        self._clock = clock
        self._sleep = sleep

        self.probes = PageProbes(bridge, script_timeout_ms=self.config.script_timeout_ms)
        self.injector = InstrumentationInjector(self.probes, config=self.config, sleep=sleep)
        self.detector = QuiescenceDetector(
            self.probes,
            config=self.config,
            screenshots=screenshots,
            clock=clock,
            sleep=sleep,
        )
        self.calibrator = BusyCalibrator(self.probes, self.detector.calibration, config=self.config, sleep=sleep)
        self.network = NetworkMonitor(self.probes)
        self.events = EventRecorder(self.probes)

    # ── Actions ───────────────────────────────────────────────────────

    async def _run_hook(self, stage: str, hook: Hook | None, report: ActionReport) -> None:
        if hook is None:
            return
        raw = await _maybe_await(hook(self.bridge.target))
        result = raw if isinstance(raw, HookResult) else HookResult(ok=bool(raw))
        report.hooks.append(HookOutcome(stage=stage, result=result))
        if result.ok:
            logger.info("%s hook returned PASS %s", stage.upper(), result.message)
        else:
            logger.error("%s hook returned FAIL %s", stage.upper(), result.message)

    async def perform_action(
        self,
        action: Action,
        description: str,
        *,
        hooks: ActionHooks | None = None,
        sync: SyncMode = SyncMode.NONE,
        context_may_change: bool = False,
    ) -> ActionReport:
        """Run ``action`` with hooks, then synchronize per ``sync``.

        Raises ProbeError when a wait probe fails, SyncTimeoutError /
        InjectionError only in strict mode.
        """
        hooks = hooks or ActionHooks()
        report = ActionReport(description=description)
        with action_context(description):
            logger.info("ACTION: %s", description)

            await self._run_hook("before", hooks.before, report)
            report.value = await _maybe_await(action(self.bridge.target))
            await self._run_hook("after_pre_sync", hooks.after_pre_sync, report)

            if sync is SyncMode.PAGE_LOAD:
                report.sync = await self.wait_for_page_load(description)
            elif sync is SyncMode.AJAX:
                report.sync = await self.wait_for_quiescence(description)

            await self._run_hook("after_post_sync", hooks.after_post_sync, report)

            if context_may_change:
                report.injection = await self.injector.ensure_injected()
        return report

    # ── Synchronization ───────────────────────────────────────────────

    async def calibrate(self) -> int:
        """Recalibrate the busy threshold on the current (quiet) page."""
        return await self.calibrator.calibrate()

    async def wait_for_quiescence(self, description: str = "") -> WaitResult:
        """Ajax sync: instrument the context if needed, then wait for quiescence.

        Falls back to the page-load wait when the context cannot be instrumented.
        """
        injection = await self.injector.ensure_injected()
        if not injection.instrumented:
            logger.warning("Context not instrumented, falling back to page-load sync")
            return await self.wait_for_page_load(description)
        return await self.detector.wait(description)

    async def wait_for_page_load(self, description: str = "") -> WaitResult:
        """Poll ``document.readyState`` until 'complete' or the page-load bound passes."""
        start = self._clock()
        timer = PhaseTimer(clock=self._clock)
        timer.phase("page_load")
        bound = self.config.page_load_timeout_ms
        poll = self.config.page_load_poll_ms / 1000
        ticks = 0

        while (self._clock() - start) * 1000 < bound:
            ticks += 1
            if await self.probes.query(Probe.READY_STATE) == "complete":
                timer.finalize()
                elapsed = (self._clock() - start) * 1000
                logger.info("Page load after: %.0fms", elapsed)
                await self.detector.record_screenshot(f"{description} Page load completed")
                return WaitResult(
                    outcome=WaitOutcome.QUIESCENT,
                    elapsed_ms=elapsed,
                    ticks=ticks,
                    phases=timer.elapsed_per_phase(),
                )
            logger.debug("Page loading...")
            await self._sleep(poll)

        report = timer.timeout_report()
        timer.finalize()
        elapsed = (self._clock() - start) * 1000
        if self.config.strict:
            raise SyncTimeoutError(f"Page did not load within {bound}ms", phase="page_load", elapsed_ms=elapsed)
        logger.warning("Page load wait timed out, proceeding anyway: %s", report)
        return WaitResult(
            outcome=WaitOutcome.TIMED_OUT,
            elapsed_ms=elapsed,
            ticks=ticks,
            phases=timer.elapsed_per_phase(),
        )

    # ── Execution context ─────────────────────────────────────────────

    async def switch_frame(self, name: str | None) -> ActionReport | None:
        """Scope the session to an iframe (by title or class) or back to the main frame.

        Instruments the new context when it carries no probes yet. Returns the
        report of that instrumentation step, or None when nothing was needed.
        """
        await self.bridge.switch_frame(name)
        if await self.injector.is_instrumented():
            return None
        logger.info("Reloading sync instrumentation for frame '%s'", name)
        return await self.perform_action(
            lambda _target: None,
            description="Instrumentation reload after frame change",
            sync=SyncMode.NONE,
            context_may_change=True,
        )

    # ── Page helpers ──────────────────────────────────────────────────

    async def scroll_to_bottom(self) -> None:
        await self.probes.query(Probe.SCROLL_TO_BOTTOM)

    async def scroll_by(self, dy: int, dx: int = 0) -> None:
        await self.probes.query(Probe.SCROLL_BY, [dx, dy])
