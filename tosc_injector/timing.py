"""Lap timer used for the decode/parse/encode/write timing logs."""

from __future__ import annotations

import time


class Stopwatch:
    def __init__(self) -> None:
        self._last = time.monotonic()

    def tick(self) -> int:
        """Return milliseconds since the previous tick and start a new lap."""
        now = time.monotonic()
        elapsed = int((now - self._last) * 1000)
        self._last = now
        return elapsed
