"""
Client-facing HTTP endpoints. Every handler reaches storage only through
the injected ``AbstractStore``.
"""

from fastapi import APIRouter

from .account import account_router
from .auth import auth_router
from .registration import registration_router

CLIENT_API_PREFIX = "/_matrix/client/r0"

client_api_router = APIRouter(prefix=CLIENT_API_PREFIX)
client_api_router.include_router(registration_router)
client_api_router.include_router(auth_router)
client_api_router.include_router(account_router)

__all__ = [
    "CLIENT_API_PREFIX",
    "client_api_router",
    "account_router",
    "auth_router",
    "registration_router",
]
