# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Browser-side capability scripts and the static queries that read them.

Two fixed vocabularies:

- ``Capability``: idempotent install scripts. Each guards against double
  installation in the page itself, so re-running one is always safe (a
  second XHR shim would otherwise wrap the first and recurse).
- ``Probe``: static query scripts. Arguments are passed through
  ``evaluate`` parameters, never interpolated into the source.

The global names installed here (``isCallingAjax``, ``mutationObserver``,
``doMovingAverage_BUSYwait``, ``requestArray``, ``requestCount``,
``getElementByXpath``, ``events``) are the compatibility surface other test
suites rely on. Do not rename them.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from .bridge import ScriptBridge
from .errors import ProbeError

logger = logging.getLogger(__name__)

# Ring buffer size for the browser-side moving average and host-side calibration.
SAMPLE_CAPACITY = 10


class Capability(StrEnum):
    QUIESCENCE_PROBES = "quiescence_probes"
    NETWORK_MONITOR = "network_monitor"
    DOM_UTILS = "dom_utils"


class Probe(StrEnum):
    INSTRUMENTED = "instrumented"
    NETWORK_PENDING = "network_pending"
    DOM_MUTATED = "dom_mutated"
    ACTIVITY = "activity"
    BUSY = "busy"
    LATENCY_SAMPLE = "latency_sample"
    READY_STATE = "ready_state"
    MUTATION_COUNT = "mutation_count"
    REQUEST_COUNT = "request_count"
    REQUEST_LOG_LENGTH = "request_log_length"
    REQUEST_AT = "request_at"
    REQUEST_LOG = "request_log"
    RECORDED_EVENTS = "recorded_events"
    XPATH_EXISTS = "xpath_exists"
    SCROLL_TO_BOTTOM = "scroll_to_bottom"
    SCROLL_BY = "scroll_by"


# ── Capability install scripts ─────────────────────────────────────

_QUIESCENCE_PROBES_JS = """(queueSize) => {
  if (typeof window.isCallingAjax === 'function' && window.mutationObserver) {
    return false;
  }

  // outstanding network calls (count maintained by the network monitor)
  window.requestCount = window.requestCount || 0;
  window.isCallingAjax = function() {
    return window.requestCount > 0;
  };

  // DOM mutations
  window.mutationCount = 0;
  window.prev_mutationCount = 0;

  MutationObserver.prototype.getCount = function() {
    return window.mutationCount;
  };

  MutationObserver.prototype.haveNewMutations = function() {
    const changed = window.prev_mutationCount !== window.mutationCount;
    window.prev_mutationCount = window.mutationCount;
    return changed;
  };

  // no console output here: mutation bursts of 80K+ records stall the page
  window.mutationObserver = new MutationObserver(function(mutations) {
    window.mutationCount += mutations.length;
  });

  window.mutationObserver.observe(document.documentElement, {
    attributes: true,
    characterData: true,
    childList: true,
    subtree: true,
    attributeOldValue: true,
    characterDataOldValue: true
  });

  // BUSY harness: moving average of timer latency over the last queueSize probes
  window.moving_ave_diff = [];
  window.idx = 0;
  window.moving_diff = 0;
  window.queue_size = queueSize;

  window.doMovingAverage_BUSYwait = function(a, callback, responseTimeout) {
    const diff = Math.abs(new Date() - a);
    window.moving_ave_diff[window.idx++ % window.queue_size] = diff;
    const n = Math.min(window.idx, window.queue_size);
    window.moving_diff = window.moving_ave_diff.reduce(function(s, v) {
      return s + v;
    }, 0) / n;
    callback(window.moving_diff > responseTimeout);
  };

  return true;
}"""

_NETWORK_MONITOR_JS = """() => {
  const proto = XMLHttpRequest.prototype;
  if (proto.realSend) {
    return false;
  }

  window.requestArray = window.requestArray || [];
  window.requestCount = window.requestCount || 0;

  proto.realOpen = proto.open;
  window.newOpen = function(method, url) {
    this._method = method;
    this._url = url;
    return proto.realOpen.apply(this, arguments);
  };
  proto.open = window.newOpen;

  proto.realSend = proto.send;
  window.newSend = function(postData) {
    const xhr = this;
    xhr.addEventListener('readystatechange', function() {
      if (xhr.readyState === XMLHttpRequest.DONE) {
        let body = null;
        try {
          body = xhr.responseText;
        } catch (e) {
          // responseText throws for binary responseType
        }
        window.requestArray.push([
          String(xhr._url), xhr._method, postData === undefined ? null : postData,
          body, xhr.status, xhr.statusText
        ]);
        window.requestCount--;
      }
    });
    window.requestCount++;
    try {
      return proto.realSend.apply(xhr, arguments);
    } catch (e) {
      window.requestCount--;
      throw e;
    }
  };
  proto.send = window.newSend;

  if (typeof window.fetch === 'function') {
    const realFetch = window.fetch;
    window.fetch = function(input, init) {
      const url = typeof input === 'string' ? input : (input && input.url) || String(input);
      const method = (init && init.method) || (input && input.method) || 'GET';
      const body = (init && init.body !== undefined) ? init.body : null;
      window.requestCount++;
      return realFetch.apply(this, arguments).then(function(response) {
        return response.clone().text().catch(function() {
          return null;
        }).then(function(text) {
          window.requestArray.push([url, method, body, text, response.status, response.statusText]);
          window.requestCount--;
          return response;
        });
      }, function(err) {
        window.requestArray.push([url, method, body, null, 0, String(err)]);
        window.requestCount--;
        throw err;
      });
    };
  }

  return true;
}"""

_DOM_UTILS_JS = """() => {
  if (typeof document.getElementByXpath !== 'undefined') {
    return false;
  }

  const nativeEvents = ['submit', 'keypress', 'click', 'dblclick', 'dragstart', 'dragend', 'wheel'];

  window.events = [];

  document.processEvent = function(event) {
    const target = event.target || {};
    window.events.push({
      type: event.type,
      tag: target.tagName ? target.tagName.toLowerCase() : '',
      id: target.id || '',
      timestamp: Date.now()
    });
  };

  for (const eventName of nativeEvents) {
    document.addEventListener(eventName, document.processEvent, true);
  }

  // installed last: presence of this function marks the context as instrumented
  document.getElementByXpath = function(path) {
    return document.evaluate(path, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
  };

  return true;
}"""

CAPABILITY_SCRIPTS: dict[Capability, str] = {
    Capability.QUIESCENCE_PROBES: _QUIESCENCE_PROBES_JS,
    Capability.NETWORK_MONITOR: _NETWORK_MONITOR_JS,
    Capability.DOM_UTILS: _DOM_UTILS_JS,
}

# ── Probe scripts (static, no interpolation) ───────────────────────

_BUSY_JS = """([delay, responseTimeout]) => new Promise(resolve => {
  const a = new Date();
  setTimeout(() => window.doMovingAverage_BUSYwait(a, resolve, responseTimeout), delay);
})"""

_LATENCY_SAMPLE_JS = """(delay) => new Promise(resolve => {
  const a = Date.now();
  setTimeout(() => resolve(Date.now() - a), delay);
})"""

_ACTIVITY_JS = """() => ({
  networkPending: document.readyState !== 'complete' || window.isCallingAjax(),
  domMutated: window.mutationObserver.haveNewMutations()
})"""

PROBE_SCRIPTS: dict[Probe, str] = {
    Probe.INSTRUMENTED: "() => typeof document.getElementByXpath !== 'undefined'",
    Probe.NETWORK_PENDING: "() => window.isCallingAjax()",
    Probe.DOM_MUTATED: "() => window.mutationObserver.haveNewMutations()",
    Probe.ACTIVITY: _ACTIVITY_JS,
    Probe.BUSY: _BUSY_JS,
    Probe.LATENCY_SAMPLE: _LATENCY_SAMPLE_JS,
    Probe.READY_STATE: "() => document.readyState",
    Probe.MUTATION_COUNT: "() => window.mutationObserver.getCount()",
    Probe.REQUEST_COUNT: "() => window.requestCount || 0",
    Probe.REQUEST_LOG_LENGTH: "() => (window.requestArray || []).length",
    Probe.REQUEST_AT: "(idx) => (window.requestArray || [])[idx] || null",
    Probe.REQUEST_LOG: "() => window.requestArray || []",
    Probe.RECORDED_EVENTS: "() => window.events || []",
    Probe.XPATH_EXISTS: "(path) => document.getElementByXpath(path) !== null",
    Probe.SCROLL_TO_BOTTOM: "() => window.scrollTo(0, document.body.scrollHeight)",
    Probe.SCROLL_BY: "([dx, dy]) => window.scrollBy(dx, dy)",
}

# Probes whose script returns a Promise resolved by a page timer.
ASYNC_PROBES = frozenset({Probe.BUSY, Probe.LATENCY_SAMPLE})


class PageProbes:
    """Capability/query protocol over a ScriptBridge.

    ``install`` lets script errors propagate so the caller's retry policy can
    see them. ``query`` wraps every failure in ``ProbeError``.
    """

    def __init__(self, bridge: ScriptBridge, *, script_timeout_ms: float = 30000) -> None:
        self.bridge = bridge
        self.script_timeout_ms = script_timeout_ms

    async def install(self, capability: Capability) -> bool:
        """Install one capability. Returns False when it was already present."""
        arg = SAMPLE_CAPACITY if capability is Capability.QUIESCENCE_PROBES else None
        installed = bool(await self.bridge.run_script(CAPABILITY_SCRIPTS[capability], arg))
        logger.debug("Capability %s %s", capability, "installed" if installed else "already present")
        return installed

    async def query(self, probe: Probe, arg: Any = None) -> Any:
        """Run a probe script and return its value."""
        script = PROBE_SCRIPTS[probe]
        try:
            if probe in ASYNC_PROBES:
                return await self.bridge.run_script_async(script, arg, timeout_ms=self.script_timeout_ms)
            return await self.bridge.run_script(script, arg)
        except Exception as exc:
            raise ProbeError(f"Probe '{probe}' failed: {exc}", probe=str(probe)) from exc
