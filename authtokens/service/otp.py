from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional, Protocol, Union

from authtokens.logging import get_logger
from authtokens.service.common import CredentialManager, KeySpace, compensate
from authtokens.service.errors import RateLimitedError
from authtokens.service.generators import random_digits
from authtokens.service.hashing import Argon2Hasher, CredentialHasher
from authtokens.service.validation import OTP_LENGTH, validate_otp, validate_subject
from authtokens.storage.common import KeyValueStore
from authtokens.storage.errors import StoreError

logger = get_logger(__name__)

MAX_ATTEMPTS = 5
OTP_KEYS = KeySpace("otp")
OTP_ATTEMPT_KEYS = KeySpace("otp:attempts")


class OTPService(Protocol):
    async def create(self, subject: str, *, timeout: Optional[float] = None) -> str: ...

    async def verify(
        self, subject: str, code: str, *, timeout: Optional[float] = None
    ) -> bool: ...

    async def revoke(self, subject: str, *, timeout: Optional[float] = None) -> None: ...

    async def revoke_all(self, *, timeout: Optional[float] = None) -> int: ...


class OTPManager(CredentialManager):
    """Hashed, rate-limited, single-use numeric codes.

    Per subject there are two keys written with the same TTL so they expire
    together:

    - ``otp:{subject}`` holds the argon2 hash of the code
    - ``otp:attempts:{subject}`` counts failed verifications

    A subject with ``MAX_ATTEMPTS`` failures is locked until a new code is
    created or both keys expire; a locked verify raises ``RateLimitedError``
    without looking at the code. A successful verify deletes both keys.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl: Union[str, timedelta],
        hasher: Optional[CredentialHasher] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        super().__init__(store, ttl=ttl, keys=OTP_KEYS, default_timeout=default_timeout)
        self._attempt_keys = OTP_ATTEMPT_KEYS
        self._hasher: CredentialHasher = hasher or Argon2Hasher()

    async def create(self, subject: str, *, timeout: Optional[float] = None) -> str:
        """Issue a fresh code for ``subject``, replacing any live one.

        Returns the plaintext code for out-of-band delivery; only its hash is
        stored.
        """
        return await self._run("otp_create", self._create(subject), timeout)

    async def _create(self, subject: str) -> str:
        validate_subject(subject)
        code = random_digits(OTP_LENGTH)
        # argon2 is deliberately slow; keep it off the event loop
        digest = await asyncio.to_thread(self._hasher.hash, code)
        code_key = self._keys.key(subject)
        await self._store.set(code_key, digest, self._ttl)
        try:
            await self._reset_attempts(subject)
        except (StoreError, asyncio.CancelledError):
            # A code must never be live without a fresh counter beside it.
            # The delete is attempted once; its own failure is only logged.
            removed = await compensate(
                "otp_create_rollback_failed",
                self._store.delete(code_key),
                subject=subject,
            )
            if removed is not None:
                logger.warning("otp_create_rolled_back", subject=subject)
            raise
        logger.info("otp_created", subject=subject)
        return code

    async def verify(
        self, subject: str, code: str, *, timeout: Optional[float] = None
    ) -> bool:
        """Check ``code`` and consume it on success.

        Unknown, expired, revoked and wrong codes all return ``False`` and
        count as a failed attempt. Raises ``RateLimitedError`` once the
        attempt budget is spent and ``ValidationError`` for a malformed code.
        """
        return await self._run("otp_verify", self._verify(subject, code), timeout)

    async def _verify(self, subject: str, code: str) -> bool:
        validate_subject(subject)
        validate_otp(code)

        attempts = await self._get_attempts(subject)
        if attempts >= MAX_ATTEMPTS:
            logger.warning("otp_locked", subject=subject, attempts=attempts)
            raise RateLimitedError(
                "max attempts exceeded",
                detail={"max_attempts": MAX_ATTEMPTS},
            )

        digest = await self._store.get(self._keys.key(subject))
        if digest is None:
            await self._record_failure(subject)
            return False

        matched = await asyncio.to_thread(self._hasher.verify, code, digest)
        if not matched:
            await self._record_failure(subject)
            return False

        await self._revoke(subject)
        logger.info("otp_verified", subject=subject)
        return True

    async def revoke(self, subject: str, *, timeout: Optional[float] = None) -> None:
        await self._run("otp_revoke", self._revoke(subject), timeout)

    async def _revoke(self, subject: str) -> None:
        validate_subject(subject)
        await self._store.delete(self._keys.key(subject))
        await self._store.delete(self._attempt_keys.key(subject))

    async def revoke_all(self, *, timeout: Optional[float] = None) -> int:
        return await self._run("otp_revoke_all", self._revoke_all(), timeout)

    async def _revoke_all(self) -> int:
        # "otp:" also covers attempt counters; the second pass catches any
        # counter written while the first pass ran
        removed = await self._delete_prefix(self._keys.prefix())
        removed += await self._delete_prefix(self._attempt_keys.prefix())
        logger.warning("otps_revoked_globally", removed=removed)
        return removed

    async def _get_attempts(self, subject: str) -> int:
        raw = await self._store.get(self._attempt_keys.key(subject))
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError as exc:
            raise StoreError(
                "corrupted attempts counter",
                operation="get",
                detail={"subject": subject},
            ) from exc

    async def _reset_attempts(self, subject: str) -> None:
        await self._store.set(self._attempt_keys.key(subject), "0", self._ttl)

    async def _increment_attempts(self, subject: str) -> int:
        """Count one failed verification.

        The first failure creates the counter with SET so the key is born with
        its TTL; later failures use INCR, which keeps the existing expiry.
        """
        key = self._attempt_keys.key(subject)
        if not await self._store.exists(key):
            await self._store.set(key, "1", self._ttl)
            return 1
        return await self._store.incr(key)

    async def _record_failure(self, subject: str) -> None:
        attempts = await compensate(
            "otp_attempt_increment_failed",
            self._increment_attempts(subject),
            subject=subject,
        )
        if attempts is not None and attempts >= MAX_ATTEMPTS:
            logger.warning("otp_lockout_triggered", subject=subject, attempts=attempts)
