# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pagesync: know when a page has finished reacting to a scripted action.

Combines three in-page signals into one "browser is idle" decision:
- network: in-flight XHR/fetch count from an interception shim
- DOM: MutationObserver counter
- busy: setTimeout latency against a self-calibrated threshold

Typical use with an open Playwright page::

    coordinator = ActionCoordinator(PlaywrightBridge(page), screenshots=ScreenshotManager())
    await coordinator.calibrate()
    await coordinator.perform_action(lambda p: p.click("#save"), "Save form", sync=SyncMode.AJAX)
"""

from __future__ import annotations

from .bridge import PlaywrightBridge, ScriptBridge
from .calibration import BusyCalibrator, CalibrationState
from .capabilities import Capability, PageProbes, Probe
from .config import SyncConfig
from .coordinator import ActionCoordinator, ActionHooks, ActionReport, HookOutcome, HookResult, SyncMode
from .errors import FrameNotFoundError, InjectionError, PageSyncError, ProbeError, SyncTimeoutError
from .injector import InjectionResult, InjectionStatus, InstrumentationInjector
from .quiescence import ActivitySignal, DetectorPhase, QuiescenceDetector, WaitOutcome, WaitResult
from .recorders import ApiField, EventRecorder, NetworkMonitor, NetworkRecord, RecordedEvent
from .retry import RetryPolicy, RetryResult
from .screenshots import ScreenshotManager, ScreenshotSink

__all__ = [
    "ActionCoordinator",
    "ActionHooks",
    "ActionReport",
    "ActivitySignal",
    "ApiField",
    "BusyCalibrator",
    "CalibrationState",
    "Capability",
    "DetectorPhase",
    "EventRecorder",
    "FrameNotFoundError",
    "HookOutcome",
    "HookResult",
    "InjectionError",
    "InjectionResult",
    "InjectionStatus",
    "InstrumentationInjector",
    "NetworkMonitor",
    "NetworkRecord",
    "PageProbes",
    "PageSyncError",
    "PlaywrightBridge",
    "Probe",
    "ProbeError",
    "QuiescenceDetector",
    "RecordedEvent",
    "RetryPolicy",
    "RetryResult",
    "ScreenshotManager",
    "ScreenshotSink",
    "ScriptBridge",
    "SyncConfig",
    "SyncMode",
    "SyncTimeoutError",
    "WaitOutcome",
    "WaitResult",
]
