# homeserver_identity/auth/errors.py
import logging
from typing import Dict, Optional

from fastapi import HTTPException, status

from ..storage.errors import StoreError, RecordNotFoundError, UnknownStoreError

logger = logging.getLogger(__name__)


class MatrixError(HTTPException):
    """
    Base class for client-facing errors.

    The detail is the standard ``{"errcode": ..., "error": ...}`` body; the
    application's exception handler returns it as the whole response.
    """

    def __init__(
        self,
        status_code: int,
        errcode: str,
        error: str,
        headers: Optional[Dict[str, str]] = None
    ):
        self.errcode = errcode
        self.error = error
        super().__init__(
            status_code=status_code,
            detail={"errcode": errcode, "error": error},
            headers=headers
        )


class MissingTokenError(MatrixError):
    def __init__(self, error: str = "Missing access token."):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED, "M_MISSING_TOKEN", error,
            headers={"WWW-Authenticate": "Bearer"}
        )


class UnknownTokenError(MatrixError):
    """The access token is invalid, expired or belongs to a removed device."""

    def __init__(self, error: str = "Unrecognised access token."):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED, "M_UNKNOWN_TOKEN", error,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(MatrixError):
    def __init__(self, error: str = "Forbidden."):
        super().__init__(status.HTTP_403_FORBIDDEN, "M_FORBIDDEN", error)


class GuestAccessForbiddenError(MatrixError):
    def __init__(self, error: str = "Guest access is not enabled on this server."):
        super().__init__(status.HTTP_403_FORBIDDEN, "M_GUEST_ACCESS_FORBIDDEN", error)


class UserInUseError(MatrixError):
    def __init__(self, error: str = "Desired user ID is already taken."):
        super().__init__(status.HTTP_400_BAD_REQUEST, "M_USER_IN_USE", error)


class InvalidUsernameError(MatrixError):
    def __init__(self, error: str = "The desired username is not a valid user name."):
        super().__init__(status.HTTP_400_BAD_REQUEST, "M_INVALID_USERNAME", error)


class InvalidParamError(MatrixError):
    def __init__(self, error: str):
        super().__init__(status.HTTP_400_BAD_REQUEST, "M_INVALID_PARAM", error)


class MissingParamError(MatrixError):
    def __init__(self, error: str):
        super().__init__(status.HTTP_400_BAD_REQUEST, "M_MISSING_PARAM", error)


class NotFoundError(MatrixError):
    def __init__(self, error: str = "Not found."):
        super().__init__(status.HTTP_404_NOT_FOUND, "M_NOT_FOUND", error)


class InternalServerError(MatrixError):
    def __init__(self, error: str = "Internal server error."):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, "M_UNKNOWN", error)


def store_error_to_http(error: StoreError, operation: str) -> MatrixError:
    """
    Convert a store failure into the response sent to the client.

    Lookups that found nothing become 404; every other kind becomes a
    generic 500. Backend diagnostics are logged, never returned.
    """
    if isinstance(error, RecordNotFoundError):
        return NotFoundError()
    if isinstance(error, UnknownStoreError):
        logger.error(f"Unknown store error during '{operation}': {error.message}")
    else:
        logger.warning(f"Store error during '{operation}' ({error.code.value}): {error.message}")
    return InternalServerError()
