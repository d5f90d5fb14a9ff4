"""Tests for service error codes and the error envelope."""

import pytest

from authtokens.service.errors import (
    ConfigurationError,
    InvalidTokenError,
    MismatchError,
    NotFoundError,
    OperationTimeoutError,
    RateLimitedError,
    ServiceError,
    TokenExpiredError,
    ValidationError,
)


@pytest.mark.parametrize(
    "exc_cls, status, code",
    [
        (ValidationError, 400, "validation_error"),
        (InvalidTokenError, 401, "unauthorized"),
        (NotFoundError, 404, "not_found"),
        (MismatchError, 409, "mismatch"),
        (RateLimitedError, 429, "rate_limited"),
        (ConfigurationError, 500, "configuration_error"),
        (OperationTimeoutError, 504, "timeout"),
    ],
)
def test_error_codes(exc_cls, status, code):
    exc = exc_cls("boom")

    assert isinstance(exc, ServiceError)
    assert exc.status_code == status
    assert exc.error_code == code


def test_to_dict_envelope():
    exc = RateLimitedError("max attempts exceeded", detail={"max_attempts": 5})

    assert exc.to_dict() == {
        "error": {
            "code": "rate_limited",
            "message": "max attempts exceeded",
            "details": {"max_attempts": 5},
        }
    }


def test_overrides():
    exc = ServiceError("teapot", status_code=418, error_code="teapot")

    assert exc.status_code == 418
    assert exc.error_code == "teapot"
    assert exc.detail == {}


def test_token_expired_is_invalid_token():
    exc = TokenExpiredError("token is expired", claims=None)

    assert isinstance(exc, InvalidTokenError)
    assert exc.status_code == 401
    assert exc.error_code == "token_expired"
    assert exc.claims is None
