# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Synchronization timing and behaviour flags.

Every deadline the engine enforces lives here so callers can override it
instead of relying on hard-coded "proceed anyway" behaviour.
Environment overrides use the ``PAGESYNC_`` prefix (see ``SyncConfig.from_env``).
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator

ENV_PREFIX = "PAGESYNC_"



class SyncConfig(BaseModel):
    """Immutable synchronization configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Busy heuristic
    busy_base_delay_ms: int = Field(default=200, gt=0)
    initial_threshold_ms: int = Field(default=220, gt=0)  # used until the first calibration
    calibration_rounds: int = Field(default=30, ge=0)
    calibration_margin: float = Field(default=1.1, gt=0)

    # Quiescence state machine
    busy_detection_ms: int = Field(default=800, gt=0)
    settle_ms: int = Field(default=300, gt=0)
    steady_poll_timeout_ms: int | None = Field(default=None, gt=0)  # None = unbounded

    # Page load
    page_load_timeout_ms: int = Field(default=30000, gt=0)
    page_load_poll_ms: int = Field(default=100, gt=0)

    # Script bridge
    script_timeout_ms: int = Field(default=30000, gt=0)

    # Instrumentation
    injection_attempts: int = Field(default=3, gt=0)
    injection_backoff_ms: int = Field(default=1000, ge=0)
    network_monitor: bool = True

    # Raise instead of log-and-continue on soft failures
    strict: bool = False

    # Screenshot file prefix, adopted by a ScreenshotManager created without one
    environment: str = "local"

    @model_validator(mode="after")
    def _deadline_exceeds_busy_detection(self) -> SyncConfig:
        # the steady-poll deadline counts from the start of busy detection
        limit = self.steady_poll_timeout_ms
        if limit is not None and limit <= self.busy_detection_ms:
            raise ValueError(
                f"steady_poll_timeout_ms ({limit}) must exceed busy_detection_ms ({self.busy_detection_ms})"
            )
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> SyncConfig:
        """Build a config from ``PAGESYNC_*`` variables, then apply explicit overrides.

        Unknown ``PAGESYNC_*`` variables are ignored. Values are validated by
        the model, so ``PAGESYNC_SETTLE_MS=0`` raises ``ValidationError``.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name, field in cls.model_fields.items():
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            raw = raw.strip()
            if field.annotation is bool:
                # pydantic parses the usual spellings and rejects the rest
                values[name] = raw.lower()
            elif name == "steady_poll_timeout_ms" and raw.lower() in ("", "none", "0"):
                values[name] = None
            else:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)
