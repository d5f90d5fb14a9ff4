from __future__ import annotations

from typing import Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from authtokens.logging import get_logger

logger = get_logger(__name__)


class CredentialHasher(Protocol):
    def hash(self, plaintext: str) -> str: ...

    def verify(self, plaintext: str, digest: str) -> bool: ...


class Argon2Hasher:
    """argon2id hasher with a tunable work factor.

    The production defaults make every call deliberately slow to throttle
    brute force; tests pass ``time_cost=1, memory_cost=8`` style parameters.
    """

    algorithm = "argon2id"

    def __init__(
        self,
        *,
        time_cost: int = 3,
        memory_cost: int = 65536,
        parallelism: int = 4,
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    def hash(self, plaintext: str) -> str:
        if not plaintext:
            raise ValueError("empty plaintext")
        return self._hasher.hash(plaintext)

    def verify(self, plaintext: str, digest: str) -> bool:
        if not plaintext or not digest:
            return False
        try:
            # argon2 compares digests in constant time
            return self._hasher.verify(digest, plaintext)
        except VerificationError:
            return False
        except InvalidHashError:
            logger.warning("credential_hash_invalid", algorithm=self.algorithm)
            return False
