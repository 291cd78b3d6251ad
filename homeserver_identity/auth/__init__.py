"""
Request authentication: sealed access tokens, the principal dependency and
the client-facing error types.
"""

from .tokens import AccessTokenManager, generate_access_token_key
from .errors import (
    MatrixError,
    MissingTokenError,
    UnknownTokenError,
    ForbiddenError,
    GuestAccessForbiddenError,
    UserInUseError,
    InvalidUsernameError,
    InvalidParamError,
    MissingParamError,
    NotFoundError,
    InternalServerError,
    store_error_to_http,
)
from .dependencies import get_current_principal

__all__ = [
    "AccessTokenManager",
    "generate_access_token_key",
    "MatrixError",
    "MissingTokenError",
    "UnknownTokenError",
    "ForbiddenError",
    "GuestAccessForbiddenError",
    "UserInUseError",
    "InvalidUsernameError",
    "InvalidParamError",
    "MissingParamError",
    "NotFoundError",
    "InternalServerError",
    "store_error_to_http",
    "get_current_principal",
]
