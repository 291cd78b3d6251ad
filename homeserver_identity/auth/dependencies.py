# homeserver_identity/auth/dependencies.py
import logging
from typing import Annotated, Optional

from fastapi import Depends, Header

from .errors import MissingTokenError, UnknownTokenError, store_error_to_http
from .tokens import AccessTokenManager
from ..dependencies import get_store, get_token_manager
from ..identity.models import Principal
from ..storage.errors import StoreError
from ..storage.storage_interfaces import AbstractStore

logger = logging.getLogger(__name__)


async def get_current_principal(
    store: Annotated[AbstractStore, Depends(get_store)],
    token_manager: Annotated[AccessTokenManager, Depends(get_token_manager)],
    authorization: Annotated[Optional[str], Header()] = None
) -> Principal:
    """
    Authenticate the request from its Bearer token.

    The token must be valid and the device it was issued for must still be
    registered, so logging a device out revokes its token.
    """
    token: Optional[str] = None
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            token = credentials.strip()

    if not token:
        logger.warning("Auth: request without a Bearer token.")
        raise MissingTokenError()

    principal = token_manager.verify(token)
    if principal is None:
        logger.warning("Auth: invalid or expired access token.")
        raise UnknownTokenError()

    if principal.device_id is not None:
        try:
            device_exists = await store.check_device_id_exists(principal.user_id, principal.device_id)
        except StoreError as e:
            raise store_error_to_http(e, "check_device_id_exists")
        if not device_exists:
            logger.info(f"Auth: token for removed device '{principal.device_id}' of {principal.user_id}.")
            raise UnknownTokenError()

    logger.debug(f"Auth: authenticated {principal.user_id} (device {principal.device_id}).")
    return principal
