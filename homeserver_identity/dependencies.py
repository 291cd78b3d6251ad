# homeserver_identity/dependencies.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from fastapi import Request

if TYPE_CHECKING:
    from .auth.tokens import AccessTokenManager
    from .identity.credentials import AbstractPasswordHasher
    from .storage.storage_interfaces import AbstractStore

logger = logging.getLogger(__name__)


def get_store(request: Request) -> AbstractStore:
    """
    The store instance shared by every handler.

    It is created once per process by the application lifespan (or passed
    to ``create_app``) and always handed out through the interface type.
    """
    store = getattr(request.app.state, "store", None)
    if store is None:
        logger.critical("Store requested before the application lifespan initialized it.")
        raise RuntimeError("Store is not initialized.")
    return store


def get_token_manager(request: Request) -> AccessTokenManager:
    return request.app.state.token_manager


def get_password_hasher(request: Request) -> AbstractPasswordHasher:
    return request.app.state.password_hasher
