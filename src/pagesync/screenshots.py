# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Screenshot sink: collects shots during a run, writes them in order afterwards.

One ScreenshotManager may be shared by several sessions running on
different threads, so the shot list and the output step are guarded by a
lock. File names sort in capture order: ``<env>_<thread>_<test>_<AAAB>_<n>_<desc>.png``.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_DEFAULT_ENVIRONMENT = "local"
_MAX_FILENAME = 100
_LETTER_WIDTH = 4
_UNSAFE_CHARS = re.compile(r"[^\w-]")


@runtime_checkable
class ScreenshotSink(Protocol):
    def add_shot(self, image: bytes, description: str) -> None: ...


@dataclass(frozen=True, slots=True)
class Shot:
    image: bytes
    description: str
    test_name: str


def letter_counter(value: int) -> str:
    """Base-26 letter rendering of ``value`` (A=0), left-padded with 'A' to 4 chars."""
    letters = ""
    b = value
    while b >= 26:
        letters = chr(65 + b % 26) + letters
        b //= 26
    letters = chr(65 + b) + letters
    return letters.rjust(_LETTER_WIDTH, "A")


def safe_filename(description: str) -> str:
    """Replace non-word characters with '_' and cut overly long names."""
    name = _UNSAFE_CHARS.sub("_", description)
    if len(name) > _MAX_FILENAME:
        name = name[: _MAX_FILENAME - 1]
    return name


class ScreenshotManager:
    """Thread-safe in-memory screenshot collection with ordered file output.

    ``environment`` prefixes every file name. Left unset, the coordinator the
    manager is handed to fills it in from ``SyncConfig.environment``.
    """

    def __init__(self, environment: str | None = None) -> None:
        self.environment = environment
        self._test_name = ""
        self._shots: list[Shot] = []
        self._lock = threading.Lock()

    @property
    def shots(self) -> list[Shot]:
        with self._lock:
            return list(self._shots)

    def set_test_name(self, name: str | None) -> None:
        """Prefix subsequent shots with ``name`` (``None`` clears it)."""
        self._test_name = "" if name is None else f"{name}_"

    def add_shot(self, image: bytes, description: str) -> None:
        with self._lock:
            self._shots.append(Shot(image=image, description=description, test_name=self._test_name))
        logger.debug("Screenshot captured: %s", description)

    def clear(self) -> None:
        with self._lock:
            self._shots.clear()

    def write_screenshots(self, directory: str | Path = ".") -> list[Path]:
        """Write all collected shots as PNG files. Returns the written paths."""
        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        environment = self.environment or _DEFAULT_ENVIRONMENT
        thread_id = threading.get_ident()
        written: list[Path] = []
        with self._lock:
            for counter, shot in enumerate(self._shots, start=1):
                filename = (
                    f"{environment}_{thread_id}_{shot.test_name}"
                    f"{letter_counter(counter)}_{counter}_{safe_filename(shot.description)}.png"
                )
                path = out_dir / filename
                path.write_bytes(shot.image)
                written.append(path)
        logger.info("Wrote %d screenshots to %s", len(written), out_dir)
        return written
