"""Explicit TTL cache for system settings lookups.

Instances are created by the caller and passed in; there is no module
level cache, so each test (or app instance) starts from an empty one.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

MISSING = object()


class SettingsCache:
    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Optional[str]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default=MISSING):
        """Return the cached value, or ``default`` when absent or expired.

        A cached ``None`` (setting known to be unset) is returned as ``None``.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: str, value: Optional[str]) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


