# homeserver_identity/api/account.py
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path

from .models import DisplayNameResponse, DisplayNameUpdate, WhoamiResponse
from ..auth.dependencies import get_current_principal
from ..auth.errors import ForbiddenError, InvalidParamError, NotFoundError, store_error_to_http
from ..dependencies import get_store
from ..identity.models import Principal, UserId
from ..storage.errors import StoreError
from ..storage.storage_interfaces import AbstractStore

logger = logging.getLogger(__name__)
account_router = APIRouter(tags=["Account"])


@account_router.get("/account/whoami", response_model=WhoamiResponse, response_model_exclude_none=True)
async def whoami(principal: Annotated[Principal, Depends(get_current_principal)]):
    """Gets information about the owner of the access token."""
    return WhoamiResponse(user_id=str(principal.user_id), device_id=principal.device_id)


def _parse_local_user_id(raw_user_id: str, store: AbstractStore) -> UserId:
    try:
        user_id = UserId.parse(raw_user_id)
    except ValueError:
        raise InvalidParamError(f"'{raw_user_id}' is not a valid user id.")
    # Remote profiles would need federation
    if user_id.server_name != store.server_name:
        raise NotFoundError("Profile not found.")
    return user_id


@account_router.get("/profile/{user_id}/displayname", response_model=DisplayNameResponse)
async def get_displayname(
    user_id: Annotated[str, Path(description="The user whose display name to get.")],
    store: Annotated[AbstractStore, Depends(get_store)]
):
    """Get the display name of a user on this server."""
    parsed = _parse_local_user_id(user_id, store)
    try:
        display_name = await store.fetch_display_name(parsed)
    except StoreError as e:
        raise store_error_to_http(e, "fetch_display_name")
    return DisplayNameResponse(displayname=display_name)


@account_router.put("/profile/{user_id}/displayname")
async def put_displayname(
    user_id: Annotated[str, Path(description="The user whose display name to set.")],
    update: DisplayNameUpdate,
    principal: Annotated[Principal, Depends(get_current_principal)],
    store: Annotated[AbstractStore, Depends(get_store)]
):
    """Set the display name of the authenticated user."""
    parsed = _parse_local_user_id(user_id, store)
    if parsed != principal.user_id:
        raise ForbiddenError("Cannot set the display name of another user.")
    try:
        await store.set_display_name(parsed, update.displayname)
    except StoreError as e:
        raise store_error_to_http(e, "set_display_name")
    logger.info(f"Display name of {parsed} updated.")
    return {}
