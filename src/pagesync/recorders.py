# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Read-side access to what the instrumentation recorded in the page.

NetworkMonitor reads the request log filled by the network capability,
EventRecorder the user-event log and XPath helper of the DOM capability.
Both only read; neither installs anything.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .capabilities import PageProbes, Probe


class ApiField(IntEnum):
    """Positions in a recorded request tuple."""

    URL = 0
    METHOD = 1
    POSTDATA = 2
    RESPONSE_TEXT = 3
    STATUS_CODE = 4
    STATUS_TEXT = 5


@dataclass(frozen=True, slots=True)
class NetworkRecord:
    url: str
    method: str
    body: Any
    response_text: str | None
    status_code: int
    status_text: str

    @classmethod
    def from_raw(cls, raw: list | tuple) -> NetworkRecord:
        values = list(raw) + [None] * (len(ApiField) - len(raw))
        return cls(
            url=str(values[ApiField.URL] or ""),
            method=str(values[ApiField.METHOD] or ""),
            body=values[ApiField.POSTDATA],
            response_text=values[ApiField.RESPONSE_TEXT],
            status_code=int(values[ApiField.STATUS_CODE] or 0),
            status_text=str(values[ApiField.STATUS_TEXT] or ""),
        )

    def field(self, which: ApiField) -> Any:
        return (self.url, self.method, self.body, self.response_text, self.status_code, self.status_text)[which]


class NetworkMonitor:
    """Queries over ``window.requestArray``."""

    def __init__(self, probes: PageProbes) -> None:
        self.probes = probes

    async def queue_length(self) -> int:
        return int(await self.probes.query(Probe.REQUEST_LOG_LENGTH) or 0)

    async def pending_count(self) -> int:
        return int(await self.probes.query(Probe.REQUEST_COUNT) or 0)

    async def record_at(self, index: int) -> NetworkRecord | None:
        raw = await self.probes.query(Probe.REQUEST_AT, index)
        return NetworkRecord.from_raw(raw) if raw else None

    async def records(self) -> list[NetworkRecord]:
        raw = await self.probes.query(Probe.REQUEST_LOG)
        return [NetworkRecord.from_raw(r) for r in raw or []]

    async def matching(self, pattern: str | re.Pattern[str], field: ApiField = ApiField.URL) -> list[NetworkRecord]:
        """Records whose ``field`` (as text) matches ``pattern`` anywhere."""
        rx = re.compile(pattern) if isinstance(pattern, str) else pattern
        return [r for r in await self.records() if rx.search(str(r.field(field) or ""))]


@dataclass(frozen=True, slots=True)
class RecordedEvent:
    type: str
    tag: str = ""
    element_id: str = ""
    timestamp: int = 0


class EventRecorder:
    """Queries over ``window.events`` and ``document.getElementByXpath``."""

    def __init__(self, probes: PageProbes) -> None:
        self.probes = probes

    async def recorded_events(self) -> list[RecordedEvent]:
        raw = await self.probes.query(Probe.RECORDED_EVENTS)
        return [
            RecordedEvent(
                type=str(e.get("type", "")),
                tag=str(e.get("tag", "")),
                element_id=str(e.get("id", "")),
                timestamp=int(e.get("timestamp", 0) or 0),
            )
            for e in raw or []
            if isinstance(e, dict)
        ]

    async def xpath_exists(self, path: str) -> bool:
        return bool(await self.probes.query(Probe.XPATH_EXISTS, path))
