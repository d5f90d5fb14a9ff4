from __future__ import annotations

import hmac
from datetime import timedelta
from typing import Optional, Protocol, Union

from authtokens.logging import get_logger
from authtokens.service.common import CredentialManager, KeySpace
from authtokens.service.errors import MismatchError, NotFoundError
from authtokens.service.generators import random_string
from authtokens.service.validation import validate_subject, validate_token
from authtokens.storage.common import KeyValueStore

logger = get_logger(__name__)

PASSWORD_RESET_TOKEN_LENGTH = 32
PASSWORD_RESET_KEYS = KeySpace("password_reset")


class PasswordResetService(Protocol):
    async def create(self, subject: str, *, timeout: Optional[float] = None) -> str: ...

    async def verify(
        self, subject: str, token: str, *, timeout: Optional[float] = None
    ) -> bool: ...

    async def revoke(
        self, subject: str, token: str, *, timeout: Optional[float] = None
    ) -> None: ...

    async def revoke_for_subject(
        self, subject: str, *, timeout: Optional[float] = None
    ) -> bool: ...

    async def revoke_all(self, *, timeout: Optional[float] = None) -> int: ...


class PasswordResetManager(CredentialManager):
    """One in-flight reset token per subject.

    The token is stored as the value of ``password_reset:{subject}``, so a
    new ``create`` for the same subject overwrites, and thereby invalidates,
    the previous token. Two concurrent creates leave exactly one live token;
    which one is unspecified.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl: Union[str, timedelta],
        default_timeout: Optional[float] = None,
    ) -> None:
        super().__init__(
            store, ttl=ttl, keys=PASSWORD_RESET_KEYS, default_timeout=default_timeout
        )

    async def create(self, subject: str, *, timeout: Optional[float] = None) -> str:
        return await self._run("password_reset_create", self._create(subject), timeout)

    async def _create(self, subject: str) -> str:
        validate_subject(subject)
        token = random_string(PASSWORD_RESET_TOKEN_LENGTH)
        await self._store.set(self._keys.key(subject), token, self._ttl)
        logger.info("password_reset_created", subject=subject)
        return token

    async def verify(
        self, subject: str, token: str, *, timeout: Optional[float] = None
    ) -> bool:
        return await self._run(
            "password_reset_verify", self._verify(subject, token), timeout
        )

    async def _verify(self, subject: str, token: str) -> bool:
        validate_subject(subject)
        validate_token(token, PASSWORD_RESET_TOKEN_LENGTH)
        stored = await self._store.get(self._keys.key(subject))
        if stored is None:
            return False
        return hmac.compare_digest(_as_bytes(stored), _as_bytes(token))

    async def revoke(
        self, subject: str, token: str, *, timeout: Optional[float] = None
    ) -> None:
        """Delete the subject's token, proving knowledge of it first.

        Raises ``NotFoundError`` when no token is live and ``MismatchError``
        when ``token`` is not the live one; in both cases nothing is deleted,
        so a third party cannot cancel a reset in flight.
        """
        await self._run("password_reset_revoke", self._revoke(subject, token), timeout)

    async def _revoke(self, subject: str, token: str) -> None:
        validate_subject(subject)
        validate_token(token, PASSWORD_RESET_TOKEN_LENGTH)
        key = self._keys.key(subject)
        stored = await self._store.get(key)
        if stored is None:
            logger.info("password_reset_revoke_missing", subject=subject)
            raise NotFoundError("password reset token not found")
        if not hmac.compare_digest(_as_bytes(stored), _as_bytes(token)):
            logger.warning("password_reset_revoke_mismatch", subject=subject)
            raise MismatchError("password reset token does not match")
        await self._store.delete(key)
        logger.info("password_reset_revoked", subject=subject)

    async def revoke_for_subject(
        self, subject: str, *, timeout: Optional[float] = None
    ) -> bool:
        """Drop the subject's token without ownership proof.

        For host flows that already authenticated the subject, e.g. right after
        a successful password change. Returns whether a token was removed.
        """
        return await self._run(
            "password_reset_revoke_subject", self._revoke_for_subject(subject), timeout
        )

    async def _revoke_for_subject(self, subject: str) -> bool:
        validate_subject(subject)
        removed = await self._store.delete(self._keys.key(subject))
        logger.info("password_reset_revoked_for_subject", subject=subject, removed=removed)
        return removed > 0

    async def revoke_all(self, *, timeout: Optional[float] = None) -> int:
        return await self._run("password_reset_revoke_all", self._revoke_all(), timeout)

    async def _revoke_all(self) -> int:
        removed = await self._delete_prefix(self._keys.prefix())
        logger.warning("password_resets_revoked_globally", removed=removed)
        return removed


def _as_bytes(value: str) -> bytes:
    return value.encode("utf-8", "surrogatepass")
