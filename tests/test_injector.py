# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for InstrumentationInjector: idempotent install, retries, strict mode."""

from __future__ import annotations

import logging

import pytest

from pagesync.capabilities import SAMPLE_CAPACITY, Capability, PageProbes, Probe
from pagesync.config import SyncConfig
from pagesync.errors import InjectionError
from pagesync.injector import InjectionResult, InjectionStatus, InstrumentationInjector
from tests._fakes import FakeBridge, FakeClock


def _injector(bridge: FakeBridge, clock: FakeClock, **overrides) -> InstrumentationInjector:
    return InstrumentationInjector(PageProbes(bridge), config=SyncConfig(**overrides), sleep=clock.sleep)


def _install_calls(bridge: FakeBridge) -> list[Capability]:
    return [kind for kind, _ in bridge.calls if isinstance(kind, Capability)]


class TestInjectionResult:
    def test_abandoned_is_not_instrumented(self):
        assert not InjectionResult(status=InjectionStatus.ABANDONED, attempts=3).instrumented

    @pytest.mark.parametrize("status", [InjectionStatus.INJECTED, InjectionStatus.ALREADY_PRESENT])
    def test_other_statuses_are_instrumented(self, status):
        assert InjectionResult(status=status, attempts=1).instrumented


class TestEnsureInjected:
    async def test_fresh_context_installs_all_capabilities(self, bridge, clock):
        injector = _injector(bridge, clock)
        result = await injector.ensure_injected()
        assert result.status is InjectionStatus.INJECTED
        assert result.attempts == 1
        assert bridge.installed == set(Capability)
        assert await injector.is_instrumented()

    async def test_install_order_marker_last(self, bridge, clock):
        await _injector(bridge, clock).ensure_injected()
        assert _install_calls(bridge) == [
            Capability.QUIESCENCE_PROBES,
            Capability.NETWORK_MONITOR,
            Capability.DOM_UTILS,
        ]

    async def test_probes_receive_queue_size(self, bridge, clock):
        await _injector(bridge, clock).ensure_injected()
        assert bridge.calls_to(Capability.QUIESCENCE_PROBES) == [SAMPLE_CAPACITY]

    async def test_second_call_is_noop(self, bridge, clock):
        injector = _injector(bridge, clock)
        first = await injector.ensure_injected()
        second = await injector.ensure_injected()
        assert first.status is InjectionStatus.INJECTED
        assert second.status is InjectionStatus.ALREADY_PRESENT
        assert len(_install_calls(bridge)) == 3

    async def test_instrumented_flag_always_read_from_browser(self, bridge, clock):
        injector = _injector(bridge, clock)
        await injector.ensure_injected()
        await injector.ensure_injected()
        assert len(bridge.calls_to(Probe.INSTRUMENTED)) == 2

    async def test_navigation_wipe_reinstalls(self, bridge, clock):
        injector = _injector(bridge, clock)
        await injector.ensure_injected()
        bridge.installed.clear()
        result = await injector.ensure_injected()
        assert result.status is InjectionStatus.INJECTED
        assert len(_install_calls(bridge)) == 6

    async def test_network_monitor_disabled(self, bridge, clock):
        injector = _injector(bridge, clock, network_monitor=False)
        assert injector.capabilities == (Capability.QUIESCENCE_PROBES, Capability.DOM_UTILS)
        await injector.ensure_injected()
        assert Capability.NETWORK_MONITOR not in bridge.installed
        assert await injector.is_instrumented()

    async def test_already_installed_capability_not_reinstalled(self, bridge, clock):
        bridge.installed.add(Capability.NETWORK_MONITOR)
        injector = _injector(bridge, clock)
        await injector.ensure_injected()
        assert await injector.ensure_capability(Capability.NETWORK_MONITOR) is False
        assert bridge.installed == set(Capability)


class TestInjectionRetries:
    async def test_three_failures_abandon_with_three_warnings(self, bridge, clock, caplog):
        bridge.fail_installs = 99
        injector = _injector(bridge, clock)
        with caplog.at_level(logging.WARNING):
            result = await injector.ensure_injected()

        assert result.status is InjectionStatus.ABANDONED
        assert not result.instrumented
        assert result.attempts == 3
        assert len(result.errors) == 3
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 3
        assert "giving up" in warnings[-1].getMessage()
        assert not await injector.is_instrumented()

    async def test_backoff_between_attempts_only(self, bridge, clock):
        bridge.fail_installs = 99
        await _injector(bridge, clock).ensure_injected()
        assert clock.sleeps == [1.0, 1.0]

    async def test_transient_failure_recovers(self, bridge, clock):
        bridge.fail_installs = 1
        result = await _injector(bridge, clock).ensure_injected()
        assert result.status is InjectionStatus.INJECTED
        assert result.attempts == 2
        assert len(result.errors) == 1
        assert bridge.installed == set(Capability)

    async def test_custom_attempts_and_backoff(self, bridge, clock):
        bridge.fail_installs = 99
        result = await _injector(bridge, clock, injection_attempts=5, injection_backoff_ms=250).ensure_injected()
        assert result.attempts == 5
        assert clock.sleeps == [0.25] * 4

    async def test_strict_mode_raises(self, bridge, clock):
        bridge.fail_installs = 99
        injector = _injector(bridge, clock, strict=True)
        with pytest.raises(InjectionError, match="after 3 attempts") as exc_info:
            await injector.ensure_injected()
        assert exc_info.value.attempts == 3
        assert exc_info.value.__cause__ is bridge.install_error

    async def test_success_logged_at_info(self, bridge, clock, caplog):
        with caplog.at_level(logging.INFO, logger="pagesync.injector"):
            await _injector(bridge, clock).ensure_injected()
        assert "Sync instrumentation loaded" in caplog.text
