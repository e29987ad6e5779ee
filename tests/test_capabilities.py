# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the capability/probe script catalogue and PageProbes dispatch."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from pagesync.capabilities import (
    ASYNC_PROBES,
    CAPABILITY_SCRIPTS,
    PROBE_SCRIPTS,
    SAMPLE_CAPACITY,
    Capability,
    PageProbes,
    Probe,
)
from pagesync.errors import ProbeError


def _mock_bridge() -> MagicMock:
    bridge = MagicMock()
    bridge.run_script = AsyncMock(return_value=True)
    bridge.run_script_async = AsyncMock(return_value=False)
    return bridge


class TestScriptCatalogue:
    def test_every_capability_and_probe_has_a_script(self):
        assert set(CAPABILITY_SCRIPTS) == set(Capability)
        assert set(PROBE_SCRIPTS) == set(Probe)

    def test_scripts_are_unique(self):
        scripts = [*CAPABILITY_SCRIPTS.values(), *PROBE_SCRIPTS.values()]
        assert len(set(scripts)) == len(scripts)

    @pytest.mark.parametrize(
        "capability,global_name",
        [
            (Capability.QUIESCENCE_PROBES, "window.isCallingAjax"),
            (Capability.QUIESCENCE_PROBES, "window.mutationObserver"),
            (Capability.QUIESCENCE_PROBES, "haveNewMutations"),
            (Capability.QUIESCENCE_PROBES, "window.doMovingAverage_BUSYwait"),
            (Capability.NETWORK_MONITOR, "window.requestArray"),
            (Capability.NETWORK_MONITOR, "window.requestCount"),
            (Capability.NETWORK_MONITOR, "window.fetch"),
            (Capability.DOM_UTILS, "document.getElementByXpath"),
            (Capability.DOM_UTILS, "window.events"),
        ],
    )
    def test_compatibility_globals_installed(self, capability, global_name):
        assert global_name in CAPABILITY_SCRIPTS[capability]

    @pytest.mark.parametrize("capability", list(Capability))
    def test_install_scripts_guard_against_reinstall(self, capability):
        assert "return false;" in CAPABILITY_SCRIPTS[capability]

    def test_marker_probe_matches_dom_utils(self):
        assert "document.getElementByXpath" in PROBE_SCRIPTS[Probe.INSTRUMENTED]

    def test_confirming_sample_includes_ready_state(self):
        assert "document.readyState !== 'complete'" in PROBE_SCRIPTS[Probe.ACTIVITY]

    def test_only_timer_probes_are_async(self):
        assert ASYNC_PROBES == {Probe.BUSY, Probe.LATENCY_SAMPLE}
        for probe in ASYNC_PROBES:
            assert "setTimeout" in PROBE_SCRIPTS[probe]


class TestPageProbes:
    async def test_install_passes_queue_size_to_probes(self):
        bridge = _mock_bridge()
        assert await PageProbes(bridge).install(Capability.QUIESCENCE_PROBES) is True
        bridge.run_script.assert_awaited_once_with(CAPABILITY_SCRIPTS[Capability.QUIESCENCE_PROBES], SAMPLE_CAPACITY)

    async def test_install_other_capability_without_arg(self):
        bridge = _mock_bridge()
        bridge.run_script.return_value = False
        assert await PageProbes(bridge).install(Capability.DOM_UTILS) is False
        bridge.run_script.assert_awaited_once_with(CAPABILITY_SCRIPTS[Capability.DOM_UTILS], None)

    async def test_install_errors_propagate_unwrapped(self):
        bridge = _mock_bridge()
        bridge.run_script.side_effect = RuntimeError("Execution context was destroyed")
        with pytest.raises(RuntimeError):
            await PageProbes(bridge).install(Capability.NETWORK_MONITOR)

    async def test_sync_probe_uses_run_script(self):
        bridge = _mock_bridge()
        bridge.run_script.return_value = "complete"
        assert await PageProbes(bridge).query(Probe.READY_STATE) == "complete"
        bridge.run_script.assert_awaited_once_with(PROBE_SCRIPTS[Probe.READY_STATE], None)
        bridge.run_script_async.assert_not_awaited()

    async def test_async_probe_uses_timeout(self):
        bridge = _mock_bridge()
        probes = PageProbes(bridge, script_timeout_ms=5000)
        assert await probes.query(Probe.BUSY, [200, 220]) is False
        bridge.run_script_async.assert_awaited_once_with(PROBE_SCRIPTS[Probe.BUSY], [200, 220], timeout_ms=5000)
        bridge.run_script.assert_not_awaited()

    @pytest.mark.parametrize("probe", [Probe.DOM_MUTATED, Probe.LATENCY_SAMPLE])
    async def test_failures_wrapped_in_probe_error(self, probe):
        bridge = _mock_bridge()
        cause = RuntimeError("window.mutationObserver is undefined")
        bridge.run_script.side_effect = cause
        bridge.run_script_async.side_effect = cause
        with pytest.raises(ProbeError) as exc_info:
            await PageProbes(bridge).query(probe)
        assert exc_info.value.probe == str(probe)
        assert exc_info.value.__cause__ is cause
        assert "is undefined" in str(exc_info.value)
