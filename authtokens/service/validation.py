from __future__ import annotations

import re
from typing import Any

from authtokens.service.errors import ValidationError

MAX_SUBJECT_LENGTH = 255
OTP_LENGTH = 6

# Subjects are embedded in store keys: ':' separates key segments and the
# glob characters would leak into prefix scans.
_FORBIDDEN_SUBJECT_CHARS = frozenset(":*?[]\\")
_OTP_PATTERN = re.compile(r"[0-9]{%d}" % OTP_LENGTH)


def validate_subject(subject: Any) -> str:
    if not isinstance(subject, str):
        raise ValidationError(
            "invalid subject", detail={"reason": "subject must be a string"}
        )
    if not subject:
        raise ValidationError("invalid subject", detail={"reason": "empty subject"})
    if len(subject) > MAX_SUBJECT_LENGTH:
        raise ValidationError("invalid subject", detail={"reason": "subject too long"})
    for ch in subject:
        if ch in _FORBIDDEN_SUBJECT_CHARS or ch.isspace() or not ch.isprintable():
            raise ValidationError(
                "invalid subject", detail={"reason": "forbidden character in subject"}
            )
    return subject


def validate_token(token: Any, max_length: int) -> str:
    """Basic shape check for opaque tokens: non-empty and at most ``max_length``."""
    if not isinstance(token, str) or not token:
        raise ValidationError("empty token")
    if len(token) > max_length:
        raise ValidationError("token too long", detail={"max_length": max_length})
    return token


def is_otp_valid(code: Any) -> bool:
    return isinstance(code, str) and _OTP_PATTERN.fullmatch(code) is not None


def validate_otp(code: Any) -> str:
    if not is_otp_valid(code):
        raise ValidationError("invalid otp", detail={"expected": f"{OTP_LENGTH} digits"})
    return code


__all__ = [
    "MAX_SUBJECT_LENGTH",
    "OTP_LENGTH",
    "validate_subject",
    "validate_token",
    "is_otp_valid",
    "validate_otp",
]
