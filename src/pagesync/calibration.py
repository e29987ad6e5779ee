# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BUSY threshold calibration.

A quiet browser fires a ``setTimeout(fn, 200)`` roughly 200 ms later; a
browser busy with script or layout work fires it late. Calibration measures
that latency on a quiet page and sets the busy threshold to the moving
average of the last ``SAMPLE_CAPACITY`` samples plus a 10% margin.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .capabilities import SAMPLE_CAPACITY, PageProbes, Probe
from .config import SyncConfig

logger = logging.getLogger(__name__)

# Pause between calibration rounds (s)
_ROUND_GAP = 0.001


@dataclass
class CalibrationState:
    """Busy threshold and its latency samples. Owned by exactly one detector."""

    threshold_ms: int = 220
    samples: deque[float] = field(default_factory=lambda: deque(maxlen=SAMPLE_CAPACITY))

    def __post_init__(self) -> None:
        if self.threshold_ms <= 0:
            raise ValueError("threshold_ms must be > 0")

    def record(self, latency_ms: float) -> None:
        """Append one sample; the oldest is evicted once the buffer is full."""
        self.samples.append(latency_ms)

    @property
    def moving_average(self) -> float | None:
        if not self.samples:
            return None
        return sum(self.samples) / len(self.samples)

    def derive_threshold(self, margin: float = 1.1) -> int:
        """Recompute the threshold from the buffer. Keeps the previous value when empty."""
        average = self.moving_average
        if average is None:
            return self.threshold_ms
        derived = round(average * margin)
        # a sub-millisecond average rounds to 0; the threshold must stay positive
        self.threshold_ms = max(derived, 1)
        return self.threshold_ms


class BusyCalibrator:
    """Measures timer latency in the page and updates a CalibrationState."""

    def __init__(
        self,
        probes: PageProbes,
        state: CalibrationState,
        *,
        config: SyncConfig | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.probes = probes
        self.state = state
        self.config = config or SyncConfig()
        self._sleep = sleep

    async def sample(self) -> float | None:
        """Run one deferred probe and return its measured latency (ms)."""
        value = await self.probes.query(Probe.LATENCY_SAMPLE, self.config.busy_base_delay_ms)
        if isinstance(value, bool) or not isinstance(value, int | float):
            logger.debug("Discarding non-numeric latency sample: %r", value)
            return None
        return float(value)

    async def calibrate(self) -> int:
        """Run all calibration rounds and return the updated threshold.

        Raises ProbeError if a sample script fails.
        """
        logger.info("Calibrating BUSY response timeout...")
        for _ in range(self.config.calibration_rounds):
            latency = await self.sample()
            if latency is not None:
                self.state.record(latency)
            await self._sleep(_ROUND_GAP)

        previous = self.state.threshold_ms
        threshold = self.state.derive_threshold(self.config.calibration_margin)
        if self.state.moving_average is None:
            logger.warning("No calibration samples recorded, keeping BUSY response timeout of %dms", previous)
        else:
            logger.info(
                "Calibration moving average %.1fms, using BUSY response timeout of %dms (+%.0f%%)",
                self.state.moving_average,
                threshold,
                (self.config.calibration_margin - 1) * 100,
            )
        return threshold
