from __future__ import annotations

import secrets

TOKEN_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz-"


def random_string(length: int) -> str:
    """Cryptographically random string over ``TOKEN_ALPHABET``."""
    if length < 0:
        raise ValueError("length must be non-negative")
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def random_digits(count: int = 6) -> str:
    """Uniform zero-padded numeric code, e.g. ``"004821"`` for count=6."""
    if count <= 0:
        raise ValueError("count must be positive")
    return str(secrets.randbelow(10**count)).zfill(count)
