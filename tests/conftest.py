# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import pagesync  # noqa: F401
except ImportError:
    raise ImportError("pagesync is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from pagesync.capabilities import CAPABILITY_SCRIPTS
from tests._fakes import FakeBridge, FakeClock, RecordingSink


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bridge(clock: FakeClock) -> FakeBridge:
    return FakeBridge(clock)


@pytest.fixture
def instrumented_bridge(bridge: FakeBridge) -> FakeBridge:
    bridge.installed.update(CAPABILITY_SCRIPTS)
    return bridge


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
