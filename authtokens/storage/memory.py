from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple

from authtokens.logging import get_logger
from authtokens.storage.errors import StoreError


class MemoryStore:
    """In-process key-value store with per-key expiry.

    Mirrors the subset of Redis semantics the credential services rely on:
    SET replaces value and expiry, INCR keeps the expiry, expired keys are
    invisible to every operation. Intended for tests and single-process dev.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock
        # key -> (value, deadline)
        self._data: Dict[str, Tuple[str, float]] = {}
        self._data_lock = threading.RLock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline <= self._clock():
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: timedelta) -> None:
        seconds = ttl.total_seconds()
        if seconds <= 0:
            raise StoreError("ttl must be positive", operation="set", detail={"key": key})
        with self._data_lock:
            self._data[key] = (str(value), self._clock() + seconds)

    async def get(self, key: str) -> Optional[str]:
        with self._data_lock:
            return self._live(key)

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._data_lock:
            for key in keys:
                if self._live(key) is not None:
                    removed += 1
                self._data.pop(key, None)
        return removed

    async def exists(self, key: str) -> bool:
        with self._data_lock:
            return self._live(key) is not None

    async def incr(self, key: str) -> int:
        with self._data_lock:
            current = self._live(key)
            if current is None:
                raise StoreError("incr on missing key", operation="incr", detail={"key": key})
            try:
                updated = int(current) + 1
            except ValueError as exc:
                raise StoreError(
                    "value is not an integer", operation="incr", detail={"key": key}
                ) from exc
            _, deadline = self._data[key]
            self._data[key] = (str(updated), deadline)
            return updated

    async def scan_prefix(self, prefix: str) -> List[str]:
        with self._data_lock:
            return [
                key
                for key in list(self._data.keys())
                if key.startswith(prefix) and self._live(key) is not None
            ]

    async def close(self) -> None:
        with self._data_lock:
            dropped = len(self._data)
            self._data.clear()
        self.logger.debug("memory_store_closed", dropped=dropped)

    def ttl_remaining(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None when absent (test helper)."""
        with self._data_lock:
            if self._live(key) is None:
                return None
            return self._data[key][1] - self._clock()
