from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from authtokens.config import Settings, get_settings, reset_settings_cache
from authtokens.logging import get_logger
from authtokens.service.access_token import AccessTokenIssuer
from authtokens.service.hashing import Argon2Hasher
from authtokens.service.otp import OTPManager
from authtokens.service.password_reset import PasswordResetManager
from authtokens.service.refresh_token import RefreshTokenManager
from authtokens.storage.common import KeyValueStore
from authtokens.storage.errors import StoreError
from authtokens.storage.memory import MemoryStore
from authtokens.storage.redis_cache import RedisStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        if parsed.username:
            netloc = f"{parsed.username}:***@{netloc}"
        else:
            netloc = f":***@{netloc}"
        return urlunparse((
            parsed.scheme,
            netloc,
            parsed.path,
            parsed.params,
            parsed.query,
            parsed.fragment,
        ))
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds one store and the credential services built on top of it."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            redis_url=_mask_url_password(self.settings.redis_url),
        )

        self.store: KeyValueStore = self._build_store()
        timeout = self.settings.operation_timeout

        self.hasher = Argon2Hasher(
            time_cost=self.settings.otp_hash_time_cost,
            memory_cost=self.settings.otp_hash_memory_cost,
            parallelism=self.settings.otp_hash_parallelism,
        )
        self.access_tokens = AccessTokenIssuer(
            secret=self.settings.require_jwt_secret(),
            issuer=self.settings.jwt_issuer,
            expiry=self.settings.jwt_expiry,
        )
        self.refresh_tokens = RefreshTokenManager(
            self.store,
            ttl=self.settings.refresh_token_ttl,
            default_timeout=timeout,
        )
        self.password_resets = PasswordResetManager(
            self.store,
            ttl=self.settings.password_reset_ttl,
            default_timeout=timeout,
        )
        self.otps = OTPManager(
            self.store,
            ttl=self.settings.otp_ttl,
            hasher=self.hasher,
            default_timeout=timeout,
        )

        logger.info(
            "runtime_initialized",
            store=type(self.store).__name__,
            refresh_token_ttl=self.settings.refresh_token_ttl,
            password_reset_ttl=self.settings.password_reset_ttl,
            otp_ttl=self.settings.otp_ttl,
            jwt_expiry=self.settings.jwt_expiry,
            operation_timeout=timeout,
        )

    def _build_store(self) -> KeyValueStore:
        if self.settings.use_memory_store:
            logger.warning("runtime_using_memory_store")
            return MemoryStore()
        store = RedisStore(
            self.settings.redis_url,
            socket_timeout=self.settings.redis_socket_timeout,
        )
        try:
            store.verify_connection()
        except StoreError:
            logger.error(
                "runtime_store_unavailable",
                redis_url=_mask_url_password(self.settings.redis_url),
            )
            raise
        return store

    async def close(self) -> None:
        await self.store.close()
        logger.info("runtime_closed")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(settings: Optional[Settings] = None) -> Runtime:
    """Rebuild the runtime singleton from freshly read settings."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            _close_quietly(runtime)
        reset_settings_cache()
        runtime = Runtime(settings)
        return runtime


def clear_runtime() -> None:
    """Drop the runtime singleton without building a new one."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            _close_quietly(runtime)
        runtime = None
        reset_settings_cache()


_close_tasks: set[asyncio.Task] = set()


def _log_close_result(task: asyncio.Task) -> None:
    _close_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("runtime_close_failed", error=str(exc))


def _close_quietly(previous: Runtime) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop is not None:
        task = loop.create_task(previous.close())
        _close_tasks.add(task)
        task.add_done_callback(_log_close_result)
        return
    try:
        asyncio.run(previous.close())
    except (StoreError, RuntimeError) as exc:
        # a client bound to a finished event loop cannot be closed from a new one
        logger.warning("runtime_close_failed", error=str(exc))
