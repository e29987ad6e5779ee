# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""pagesync exception hierarchy.

All pagesync errors inherit from PageSyncError, so callers can catch the
base class for any synchronization failure or a subclass for targeted
handling. Soft failures (injection abandoned, bounded waits expiring) only
surface as exceptions when ``SyncConfig.strict`` is set.
"""

from __future__ import annotations


class PageSyncError(Exception):
    """Base exception for all pagesync errors."""


class ProbeError(PageSyncError):
    """A wait probe script failed inside the browser (fatal to the current action)."""

    def __init__(self, message: str, *, probe: str = "") -> None:
        super().__init__(message)
        self.probe = probe


class InjectionError(PageSyncError):
    """Instrumentation could not be installed after exhausting retries (strict mode)."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class SyncTimeoutError(PageSyncError):
    """A bounded wait exceeded its deadline (strict mode)."""

    def __init__(self, message: str, *, phase: str = "", elapsed_ms: float = 0.0) -> None:
        super().__init__(message)
        self.phase = phase
        self.elapsed_ms = elapsed_ms


class FrameNotFoundError(PageSyncError):
    """No iframe matched the requested title or class."""
