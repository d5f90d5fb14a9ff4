from __future__ import annotations

from datetime import timedelta
from typing import Optional, Protocol, Union

from authtokens.logging import get_logger
from authtokens.service.common import CredentialManager, KeySpace
from authtokens.service.generators import random_string
from authtokens.service.validation import validate_subject, validate_token
from authtokens.storage.common import KeyValueStore

logger = get_logger(__name__)

REFRESH_TOKEN_LENGTH = 255
REFRESH_KEYS = KeySpace("refresh")
_PRESENT = "1"


class RefreshTokenService(Protocol):
    async def create(self, subject: str, *, timeout: Optional[float] = None) -> str: ...

    async def verify(
        self, subject: str, token: str, *, timeout: Optional[float] = None
    ) -> bool: ...

    async def revoke(
        self, subject: str, token: str, *, timeout: Optional[float] = None
    ) -> None: ...

    async def revoke_all_for_subject(
        self, subject: str, *, timeout: Optional[float] = None
    ) -> int: ...

    async def revoke_all(self, *, timeout: Optional[float] = None) -> int: ...


class RefreshTokenManager(CredentialManager):
    """Multi-device refresh tokens.

    Each token lives under ``refresh:{subject}:{token}`` with a marker value;
    existence of the key is the proof of validity, so a subject may hold any
    number of live tokens at once. Tokens are reusable until revoked or
    expired.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl: Union[str, timedelta],
        default_timeout: Optional[float] = None,
    ) -> None:
        super().__init__(store, ttl=ttl, keys=REFRESH_KEYS, default_timeout=default_timeout)

    async def create(self, subject: str, *, timeout: Optional[float] = None) -> str:
        """Issue a new token for ``subject``; the plaintext is returned once."""
        return await self._run("refresh_create", self._create(subject), timeout)

    async def _create(self, subject: str) -> str:
        validate_subject(subject)
        token = random_string(REFRESH_TOKEN_LENGTH)
        await self._store.set(self._keys.key(subject, token), _PRESENT, self._ttl)
        logger.info("refresh_token_created", subject=subject)
        return token

    async def verify(
        self, subject: str, token: str, *, timeout: Optional[float] = None
    ) -> bool:
        return await self._run("refresh_verify", self._verify(subject, token), timeout)

    async def _verify(self, subject: str, token: str) -> bool:
        validate_subject(subject)
        validate_token(token, REFRESH_TOKEN_LENGTH)
        return await self._store.exists(self._keys.key(subject, token))

    async def revoke(
        self, subject: str, token: str, *, timeout: Optional[float] = None
    ) -> None:
        """Delete one token. Revoking an unknown or expired token is a no-op."""
        await self._run("refresh_revoke", self._revoke(subject, token), timeout)

    async def _revoke(self, subject: str, token: str) -> None:
        validate_subject(subject)
        validate_token(token, REFRESH_TOKEN_LENGTH)
        removed = await self._store.delete(self._keys.key(subject, token))
        logger.info("refresh_token_revoked", subject=subject, removed=removed)

    async def revoke_all_for_subject(
        self, subject: str, *, timeout: Optional[float] = None
    ) -> int:
        """Log the subject out of every device."""
        return await self._run(
            "refresh_revoke_subject", self._revoke_all_for_subject(subject), timeout
        )

    async def _revoke_all_for_subject(self, subject: str) -> int:
        validate_subject(subject)
        removed = await self._delete_prefix(self._keys.prefix(subject))
        logger.info("refresh_tokens_revoked_for_subject", subject=subject, removed=removed)
        return removed

    async def revoke_all(self, *, timeout: Optional[float] = None) -> int:
        """Delete every refresh token of every subject."""
        return await self._run("refresh_revoke_all", self._revoke_all(), timeout)

    async def _revoke_all(self) -> int:
        removed = await self._delete_prefix(self._keys.prefix())
        logger.warning("refresh_tokens_revoked_globally", removed=removed)
        return removed
