import asyncio
from enum import Enum
from typing import Optional

from fastapi import HTTPException
from google.api_core import exceptions as gexc


class ErrorType(str, Enum):
    NETWORK = "network"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    DATABASE = "database"
    UNKNOWN = "unknown"


USER_MESSAGES = {
    ErrorType.NETWORK: "Connection error. Please check your internet connection",
    ErrorType.PERMISSION: "You do not have permission to perform this action",
    ErrorType.NOT_FOUND: "The requested post could not be found",
    ErrorType.VALIDATION: "Content exceeds maximum length",
    ErrorType.DATABASE: "A system error occurred. Please try again later.",
    ErrorType.UNKNOWN: "Something went wrong. Please try again.",
}


def classify_backend_error(exc: BaseException) -> ErrorType:
    """
    Map an exception raised by the backend SDK (or by our own timeout) onto an ErrorType
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorType.NETWORK
    if isinstance(exc, (gexc.DeadlineExceeded, gexc.ServiceUnavailable, gexc.RetryError)):
        return ErrorType.NETWORK
    if isinstance(exc, (gexc.PermissionDenied, gexc.Unauthenticated, gexc.Unauthorized, gexc.Forbidden)):
        return ErrorType.PERMISSION
    if isinstance(exc, gexc.NotFound):
        return ErrorType.NOT_FOUND
    if isinstance(exc, (gexc.InvalidArgument, gexc.FailedPrecondition, gexc.BadRequest)):
        return ErrorType.VALIDATION
    if isinstance(exc, gexc.GoogleAPIError):
        return ErrorType.DATABASE
    return ErrorType.UNKNOWN


class ReconcilerError(Exception):
    """Base class for errors scoped to a single post's counts"""

    default_type = ErrorType.UNKNOWN

    def __init__(self, message: str, post_id: Optional[str] = None,
                 error_type: Optional[ErrorType] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.post_id = post_id
        self.error_type = error_type or self.default_type
        self.cause = cause

    @classmethod
    def from_exception(cls, exc: BaseException, post_id: Optional[str] = None) -> "ReconcilerError":
        error_type = classify_backend_error(exc)
        return cls(f"{cls.__name__} for post {post_id}: {exc!r}", post_id, error_type, exc)

    @property
    def retryable(self) -> bool:
        return self.error_type in (ErrorType.NETWORK, ErrorType.DATABASE)

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.error_type]


class CountFetchError(ReconcilerError):
    default_type = ErrorType.NETWORK


class SubscriptionError(ReconcilerError):
    default_type = ErrorType.NETWORK


class OptimisticWriteError(ReconcilerError):
    default_type = ErrorType.DATABASE


class PostNotFoundError(ReconcilerError):
    default_type = ErrorType.NOT_FOUND


HTTP_STATUS = {
    ErrorType.NETWORK: 503,
    ErrorType.PERMISSION: 403,
    ErrorType.NOT_FOUND: 404,
    ErrorType.VALIDATION: 400,
}


def to_http_exception(error: ReconcilerError) -> HTTPException:
    return HTTPException(status_code=HTTP_STATUS.get(error.error_type, 500), detail=error.user_message)
