"""Plumbing shared by the credential managers.

Key naming, TTL resolution, per-call deadlines and the log-only compensating
action helper live here so each manager only spells out its own lifecycle.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Optional, TypeVar, Union

from authtokens.config import parse_duration
from authtokens.logging import get_logger
from authtokens.service.errors import ConfigurationError, OperationTimeoutError
from authtokens.storage.common import KeyValueStore
from authtokens.storage.errors import StoreError

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class KeySpace:
    """Immutable key-naming scheme for one credential type."""

    namespace: str

    def key(self, *parts: str) -> str:
        return ":".join((self.namespace, *parts))

    def prefix(self, *parts: str) -> str:
        return self.key(*parts) + ":"


def resolve_ttl(ttl: Union[str, timedelta], *, name: str) -> timedelta:
    if isinstance(ttl, timedelta):
        if ttl.total_seconds() <= 0:
            raise ConfigurationError(f"{name} must be positive")
        return ttl
    try:
        return parse_duration(ttl)
    except ConfigurationError as exc:
        raise ConfigurationError(f"invalid {name}: {exc.message}") from exc


async def run_with_deadline(
    operation: str, call: Awaitable[T], timeout: Optional[float]
) -> T:
    if timeout is None:
        return await call
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("credential_operation_timeout", operation=operation, timeout=timeout)
        raise OperationTimeoutError(
            f"{operation} exceeded its {timeout}s deadline",
            detail={"operation": operation, "timeout": timeout},
        ) from exc


async def compensate(event: str, action: Awaitable[T], **log_fields) -> Optional[T]:
    """Run a best-effort secondary store operation.

    A ``StoreError`` is logged under ``event`` and swallowed; the caller's
    primary result or error stands unchanged.
    """

    try:
        return await action
    except StoreError as exc:
        logger.warning(event, error=str(exc), operation=exc.operation, **log_fields)
        return None


class CredentialManager:
    """Store handle, key scheme, TTL and default deadline for one credential type."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl: Union[str, timedelta],
        keys: KeySpace,
        default_timeout: Optional[float] = None,
    ) -> None:
        if store is None:
            raise ConfigurationError("store is required")
        self._store = store
        self._keys = keys
        self._ttl = resolve_ttl(ttl, name=f"{keys.namespace} ttl")
        self._default_timeout = default_timeout

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def _run(
        self, operation: str, call: Awaitable[T], timeout: Optional[float]
    ) -> T:
        effective = timeout if timeout is not None else self._default_timeout
        return await run_with_deadline(operation, call, effective)

    async def _delete_prefix(self, prefix: str) -> int:
        keys = await self._store.scan_prefix(prefix)
        if not keys:
            return 0
        return await self._store.delete(*keys)
