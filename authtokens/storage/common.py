"""Key-value store contract shared by the Redis and in-memory backends.

The credential services only ever talk to a store through this protocol, so
any backend offering per-key expiry, atomic set/increment, prefix enumeration
and delete qualifies.
"""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional, Protocol

_GLOB_SPECIALS = "\\*?[]"


class KeyValueStore(Protocol):
    async def set(self, key: str, value: str, ttl: timedelta) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def incr(self, key: str) -> int: ...

    async def scan_prefix(self, prefix: str) -> List[str]: ...

    async def close(self) -> None: ...


def ttl_milliseconds(ttl: timedelta) -> int:
    """Convert a TTL to whole milliseconds, clamped to at least 1ms.

    Redis rejects zero or negative expiries, so sub-millisecond values are
    rounded up rather than silently producing a key without expiry.
    """

    return max(1, int(ttl.total_seconds() * 1000))


def glob_escape(prefix: str) -> str:
    """Escape glob metacharacters so a prefix matches literally in SCAN."""

    escaped = []
    for ch in prefix:
        if ch in _GLOB_SPECIALS:
            escaped.append("\\")
        escaped.append(ch)
    return "".join(escaped)


__all__ = ["KeyValueStore", "ttl_milliseconds", "glob_escape"]
