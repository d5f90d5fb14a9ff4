from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from authtokens.service.access_token import AccessClaims


class ServiceError(Exception):
    """Base class for credential service exceptions.

    Each exception class carries an ``error_code`` that stays stable across
    releases and a ``status_code`` hint for hosts that expose the services
    over HTTP:
    - validation_error (400)
    - unauthorized (401)
    - token_expired (401)
    - not_found (404)
    - mismatch (409)
    - rate_limited (429)
    - configuration_error (500)
    - timeout (504)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.detail,
            }
        }


class ValidationError(ServiceError):
    """Malformed subject, token or code; raised before any store access (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidTokenError(ServiceError):
    """Access token failed signature or structure checks (401)."""
    status_code = 401
    error_code = "unauthorized"


class TokenExpiredError(InvalidTokenError):
    """Access token is well formed and signed but past its expiry (401).

    ``claims`` holds the parsed claims so callers can still identify the
    subject when driving a refresh-token exchange.
    """
    error_code = "token_expired"

    def __init__(self, message: str, *, claims: "AccessClaims", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.claims = claims


class NotFoundError(ServiceError):
    """Credential absent where the operation requires it (404)."""
    status_code = 404
    error_code = "not_found"


class MismatchError(ServiceError):
    """Presented value does not match the live credential (409)."""
    status_code = 409
    error_code = "mismatch"


class RateLimitedError(ServiceError):
    """Verification attempts exhausted for the current credential (429)."""
    status_code = 429
    error_code = "rate_limited"


class ConfigurationError(ServiceError):
    """Unparsable duration or missing secret (500)."""
    status_code = 500
    error_code = "configuration_error"


class OperationTimeoutError(ServiceError):
    """Deadline exceeded before the operation completed (504)."""
    status_code = 504
    error_code = "timeout"


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidTokenError",
    "TokenExpiredError",
    "NotFoundError",
    "MismatchError",
    "RateLimitedError",
    "ConfigurationError",
    "OperationTimeoutError",
]
