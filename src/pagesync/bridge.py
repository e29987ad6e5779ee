# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Browser scripting bridge.

The engine never touches Playwright directly: every round-trip into the page
goes through a ``ScriptBridge``. ``PlaywrightBridge`` is the production
implementation; tests substitute an in-memory fake.

The bridge owns the current execution context (a Playwright ``Page`` or
``Frame``). Switching frames retargets the bridge; instrumentation state of
the new context is never assumed and must be probed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

from playwright.async_api import Frame, Page

from .errors import FrameNotFoundError

logger = logging.getLogger(__name__)


@runtime_checkable
class ScriptBridge(Protocol):
    """Round-trip access to one execution context in the browser."""

    @property
    def target(self) -> Any:
        """The current execution context handed to actions and hooks."""
        ...

    async def run_script(self, script: str, arg: Any = None) -> Any: ...

    async def run_script_async(self, script: str, arg: Any = None, *, timeout_ms: float) -> Any: ...

    async def screenshot(self) -> bytes: ...

    async def switch_frame(self, name: str | None) -> None: ...


class PlaywrightBridge:
    """ScriptBridge over a Playwright page and one of its frames."""

    def __init__(self, page: Page) -> None:
        self._page = page
        self._target: Page | Frame = page

    @property
    def page(self) -> Page:
        return self._page

    @property
    def target(self) -> Page | Frame:
        return self._target

    async def run_script(self, script: str, arg: Any = None) -> Any:
        """Evaluate a function expression in the current context and return its result."""
        return await self._target.evaluate(script, arg)

    async def run_script_async(self, script: str, arg: Any = None, *, timeout_ms: float) -> Any:
        """Evaluate a Promise-returning function expression, bounded by ``timeout_ms``.

        Playwright awaits the returned Promise, so the script resolves its
        own completion callback. Raises ``TimeoutError`` on expiry.
        """
        async with asyncio.timeout(timeout_ms / 1000):
            return await self._target.evaluate(script, arg)

    async def screenshot(self) -> bytes:
        """Capture the viewport of the owning page (frames cannot be captured alone)."""
        return await self._page.screenshot()

    async def switch_frame(self, name: str | None) -> None:
        """Retarget to the iframe whose ``title`` or ``class`` equals ``name``.

        ``None`` returns to the main frame.
        """
        if name is None:
            self._target = self._page
            logger.info("Switched to main frame")
            return

        for frame in self._page.frames:
            if frame is self._page.main_frame:
                continue
            element = await frame.frame_element()
            title = await element.get_attribute("title")
            css_class = await element.get_attribute("class")
            if name in (title, css_class):
                self._target = frame
                logger.info("Switched to frame '%s' (%s)", name, frame.url)
                return
        raise FrameNotFoundError(f"No iframe with title or class '{name}'")
