# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Wait-phase timer for latency logging and timeout diagnostics.

Takes the same injectable clock as the wait that owns it, so phase timings
stay consistent with the deadlines the wait enforces.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(slots=True)
class PhaseRecord:
    name: str
    start: float
    end: float = 0.0


class PhaseTimer:
    """Track wait phase transitions (busy_detection, steady_poll, page_load)."""

    __slots__ = ("_phases", "_current", "_start", "_clock")

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._phases: list[PhaseRecord] = []
        self._current: PhaseRecord | None = None
        self._start: float = clock()

    def phase(self, name: str) -> None:
        """End previous phase + start new phase."""
        now = self._clock()
        if self._current is not None:
            self._current.end = now
            self._phases.append(self._current)
        self._current = PhaseRecord(name=name, start=now)

    def finalize(self) -> None:
        """End current phase. Call on success or error."""
        if self._current is not None:
            self._current.end = self._clock()
            self._phases.append(self._current)
            self._current = None

    @property
    def current_phase(self) -> str | None:
        return self._current.name if self._current else None

    @property
    def total_ms(self) -> float:
        return round((self._clock() - self._start) * 1000, 1)

    def elapsed_per_phase(self) -> dict[str, float]:
        """Return {phase_name: elapsed_ms} for all phases (including current)."""
        now = self._clock()
        result: dict[str, float] = {}
        for p in self._phases:
            result[p.name] = round((p.end - p.start) * 1000, 1)
        if self._current is not None:
            result[self._current.name] = round((now - self._current.start) * 1000, 1)
        return result

    def timeout_report(self) -> dict:
        """Structured diagnostic for soft and strict timeouts."""
        now = self._clock()
        completed = [{"phase": p.name, "ms": round((p.end - p.start) * 1000, 1)} for p in self._phases]
        current = self.current_phase or "unknown"
        current_ms = round((now - self._current.start) * 1000, 1) if self._current else 0
        return {
            "error": "timeout",
            "completed_phases": completed,
            "timed_out_at": current,
            "timed_out_phase_ms": current_ms,
            "total_ms": round((now - self._start) * 1000, 1),
            "hint": self.hint_for_phase(current),
        }

    @staticmethod
    def hint_for_phase(phase: str) -> str:
        hints = {
            "busy_detection": "Browser never looked busy. The action may not have triggered any work.",
            "steady_poll": "Page keeps polling or mutating. Consider a longer steady_poll_timeout_ms.",
            "page_load": "document.readyState never reached 'complete'. Page may have long-loading resources.",
        }
        return hints.get(phase, f"Timed out during '{phase}' phase.")
