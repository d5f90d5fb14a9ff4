from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from authtokens.config import parse_duration
from authtokens.logging import get_logger
from authtokens.service.errors import (
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
)
from authtokens.service.validation import validate_subject

logger = get_logger(__name__)

ACCESS_KEY_TYPE = "access"
JWT_ALGORITHM = "HS256"
DEFAULT_LEEWAY = timedelta(seconds=5)


@dataclass(frozen=True)
class Principal:
    """The authenticated party an access token is issued to."""

    subject: str
    email: Optional[str] = None


@dataclass(frozen=True)
class AccessClaims:
    subject: str
    email: Optional[str]
    key_type: str
    issuer: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime
    token_id: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "key_type": self.key_type,
            "sub": self.subject,
            "email": self.email,
            "iss": self.issuer,
            "iat": int(self.issued_at.timestamp()),
            "nbf": int(self.not_before.timestamp()),
            "exp": int(self.expires_at.timestamp()),
            "jti": self.token_id,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AccessClaims":
        """Build claims from a decoded payload; raises ValueError when malformed."""
        subject = payload.get("sub")
        issuer = payload.get("iss")
        token_id = payload.get("jti")
        key_type = payload.get("key_type")
        email = payload.get("email")
        required = (
            ("sub", subject),
            ("iss", issuer),
            ("jti", token_id),
            ("key_type", key_type),
        )
        for name, value in required:
            if not isinstance(value, str) or not value:
                raise ValueError(f"missing or invalid {name} claim")
        if email is not None and not isinstance(email, str):
            raise ValueError("invalid email claim")
        return cls(
            subject=subject,
            email=email,
            key_type=key_type,
            issuer=issuer,
            issued_at=_numeric_date(payload, "iat"),
            not_before=_numeric_date(payload, "nbf"),
            expires_at=_numeric_date(payload, "exp"),
            token_id=token_id,
        )


def _numeric_date(payload: dict[str, Any], name: str) -> datetime:
    raw = payload.get(name)
    # bool is an int subclass but never a valid timestamp
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueError(f"missing or invalid {name} claim")
    try:
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ValueError(f"out of range {name} claim") from exc


class AccessTokenService(Protocol):
    def issue(self, principal: Principal) -> str: ...

    def verify(self, token: str) -> AccessClaims: ...


class AccessTokenIssuer:
    """Stateless HS256 access tokens.

    Nothing is stored: a token is valid as long as its signature checks out
    and it has not expired, so there is no revocation short of rotating the
    secret.
    """

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        expiry: str,
        leeway: timedelta = DEFAULT_LEEWAY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ConfigurationError("jwt secret is required")
        if not issuer:
            raise ConfigurationError("jwt issuer is required")
        self._secret = secret.encode()
        self._issuer = issuer
        self._expiry = expiry
        self._leeway = leeway
        self._clock = clock

    def issue(self, principal: Principal) -> str:
        validate_subject(principal.subject)
        lifetime = parse_duration(self._expiry)
        now = int(self._clock())
        issued_at = datetime.fromtimestamp(now, tz=timezone.utc)
        claims = AccessClaims(
            subject=principal.subject,
            email=principal.email,
            key_type=ACCESS_KEY_TYPE,
            issuer=self._issuer,
            issued_at=issued_at,
            not_before=issued_at,
            expires_at=issued_at + lifetime,
            token_id=str(uuid.uuid4()),
        )
        token = self._encode_jwt(claims.to_payload())
        logger.debug("access_token_issued", subject=principal.subject, jti=claims.token_id)
        return token

    def verify(self, token: str) -> AccessClaims:
        """Return the claims of a valid token.

        Raises ``TokenExpiredError`` (with ``claims`` attached) for a genuine
        token past its expiry plus leeway, and ``InvalidTokenError`` for any
        other failure.
        """
        if not isinstance(token, str) or not token:
            raise InvalidTokenError("invalid token")
        payload = self._decode_jwt(token)
        if payload is None:
            raise InvalidTokenError("invalid token")
        try:
            claims = AccessClaims.from_payload(payload)
        except ValueError as exc:
            logger.warning("jwt_claims_invalid", error=str(exc))
            raise InvalidTokenError("invalid token claims") from exc
        if claims.issuer != self._issuer:
            logger.warning("jwt_issuer_mismatch", issuer=claims.issuer)
            raise InvalidTokenError("invalid token issuer")
        if claims.key_type != ACCESS_KEY_TYPE:
            raise InvalidTokenError("invalid token type")

        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        if now < claims.not_before - self._leeway:
            raise InvalidTokenError("token not valid yet")
        if now > claims.expires_at + self._leeway:
            raise TokenExpiredError("token is expired", claims=claims)
        return claims

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(
                self._secret,
                signing_input.encode("utf-8", "surrogatepass"),
                hashlib.sha256,
            ).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": JWT_ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Pin the algorithm to prevent algorithm confusion attacks
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != JWT_ALGORITHM:
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(
            expected_sig.encode(), sig_b64.encode("utf-8", "surrogatepass")
        ):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        return payload
