"""
Folio codes for emergency reports.
"""

from __future__ import annotations

import re
import threading
import time
from typing import Callable

FOLIO_PREFIX = "EMG-"
FOLIO_PATTERN = re.compile(r"^EMG-\d+$")


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class FolioGenerator:
    """
    Issues `EMG-<epoch ms>` codes that never repeat within the process.

    When two calls land in the same millisecond (or the clock steps back),
    the previous value plus one is used instead.
    """

    def __init__(self, clock: Callable[[], int] = _epoch_millis):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            value = max(self._clock(), self._last + 1)
            self._last = value
        return f"{FOLIO_PREFIX}{value}"
