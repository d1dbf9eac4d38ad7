import asyncio

import pytest
from google.api_core import exceptions as gexc

from services.errors import (
    CountFetchError,
    ErrorType,
    OptimisticWriteError,
    PostNotFoundError,
    classify_backend_error,
    to_http_exception,
)


@pytest.mark.parametrize("exc, expected", [
    (asyncio.TimeoutError(), ErrorType.NETWORK),
    (ConnectionError("reset"), ErrorType.NETWORK),
    (gexc.DeadlineExceeded("slow"), ErrorType.NETWORK),
    (gexc.ServiceUnavailable("down"), ErrorType.NETWORK),
    (gexc.PermissionDenied("rules"), ErrorType.PERMISSION),
    (gexc.Unauthenticated("token"), ErrorType.PERMISSION),
    (gexc.NotFound("gone"), ErrorType.NOT_FOUND),
    (gexc.InvalidArgument("bad filter"), ErrorType.VALIDATION),
    (gexc.FailedPrecondition("needs index"), ErrorType.VALIDATION),
    (gexc.InternalServerError("boom"), ErrorType.DATABASE),
    (ValueError("what"), ErrorType.UNKNOWN),
])
def test_classify_backend_error(exc, expected):
    assert classify_backend_error(exc) == expected


def test_from_exception_keeps_cause_and_post():
    cause = gexc.Aborted("contention")
    error = OptimisticWriteError.from_exception(cause, "p1")

    assert error.post_id == "p1"
    assert error.cause is cause
    assert error.error_type == ErrorType.DATABASE
    assert error.retryable


def test_default_types():
    assert CountFetchError("x").error_type == ErrorType.NETWORK
    assert PostNotFoundError("x").error_type == ErrorType.NOT_FOUND
    assert not PostNotFoundError("x").retryable


@pytest.mark.parametrize("error, status", [
    (CountFetchError("x"), 503),
    (PostNotFoundError("x"), 404),
    (CountFetchError("x", error_type=ErrorType.PERMISSION), 403),
    (CountFetchError("x", error_type=ErrorType.VALIDATION), 400),
    (OptimisticWriteError("x"), 500),
])
def test_to_http_exception(error, status):
    exc = to_http_exception(error)

    assert exc.status_code == status
    assert exc.detail == error.user_message
